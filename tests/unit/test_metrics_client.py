"""
Unit tests for TuningMetricsClient

Uses a real prometheus_client registry; the Push Gateway is patched out.
"""

import sys
import os
from decimal import Decimal
from unittest.mock import patch
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from sysctl_tuning.calculator import calculate
from sysctl_tuning.metrics_client import TuningMetricsClient
from sysctl_tuning.models import KeyMatch, ManagedFile, ResolutionReport, TuningInputs


@pytest.fixture
def budget():
    return calculate(TuningInputs(memory_gib=Decimal('4'), bandwidth_mbps=1000, rtt_ms=Decimal('150')))


class TestInitialization:
    """Test enablement"""

    @patch.dict(os.environ, {'SYSCTL_TUNING_METRICS_ENABLED': 'false'})
    @patch('sysctl_tuning.metrics_client.CollectorRegistry')
    def test_disabled_by_default(self, mock_registry):
        """Test no registry is created when disabled"""
        client = TuningMetricsClient(host_id='web-1')

        assert client.enabled is False
        mock_registry.assert_not_called()
        assert client.export() is False

    @patch.dict(os.environ, {'SYSCTL_TUNING_METRICS_ENABLED': 'true'})
    def test_enabled_from_env(self):
        assert TuningMetricsClient(host_id='web-1').enabled is True

    def test_disabled_methods_are_noops(self, budget):
        client = TuningMetricsClient(host_id='web-1', enabled=False)

        client.record_budget(budget)
        client.record_apply(True)
        client.mark_outcome('completed')


class TestRecording:
    """Test metric values"""

    def test_record_budget(self, budget):
        client = TuningMetricsClient(host_id='web-1', enabled=True)

        client.record_budget(budget)

        labels = {'host': 'web-1', 'mode': 'conservative'}
        assert client.registry.get_sample_value('sysctl_tuning_bdp_bytes', labels) == 18750000
        assert client.registry.get_sample_value(
            'sysctl_tuning_buffer_max_bytes', dict(labels, tier='bucket-32MiB')) == 33554432

    def test_record_resolution(self):
        client = TuningMetricsClient(host_id='web-1', enabled=True)
        report = ResolutionReport(
            neutralized=[ManagedFile(path='/etc/sysctl.conf', original_content='', action='commented')],
            read_only_matches=[KeyMatch(path='/usr/lib/sysctl.d/x.conf', line_number=1, key='net.core.rmem_max', line='')] * 2,
        )

        client.record_resolution(report)

        sample = client.registry.get_sample_value
        assert sample('sysctl_tuning_conflicts_total', {'host': 'web-1', 'action': 'commented'}) == 1
        assert sample('sysctl_tuning_conflicts_total', {'host': 'web-1', 'action': 'relocated'}) == 0
        assert sample('sysctl_tuning_conflicts_total', {'host': 'web-1', 'action': 'read_only'}) == 2

    def test_mark_outcome(self):
        """Test exactly one status is set"""
        client = TuningMetricsClient(host_id='web-1', enabled=True)

        client.record_apply(False)
        client.mark_outcome('failed')

        sample = client.registry.get_sample_value
        assert sample('sysctl_tuning_apply_success', {'host': 'web-1'}) == 0
        assert sample('sysctl_tuning_run_status', {'host': 'web-1', 'status': 'failed'}) == 1
        assert sample('sysctl_tuning_run_status', {'host': 'web-1', 'status': 'completed'}) == 0
        assert sample('sysctl_tuning_last_run_timestamp_seconds', {'host': 'web-1'}) > 0


class TestExport:
    """Test textfile and push export"""

    def test_write_textfile(self, tmp_path, budget):
        path = tmp_path / 'sysctl_tuning.prom'
        client = TuningMetricsClient(host_id='web-1', textfile_path=str(path), enabled=True)
        client.record_budget(budget)

        assert client.export() is True
        assert 'sysctl_tuning_bdp_bytes{host="web-1",mode="conservative"}' in path.read_text()

    @patch('sysctl_tuning.metrics_client.push_to_gateway')
    def test_push(self, mock_push):
        client = TuningMetricsClient(host_id='web-1', pushgateway_url='http://pushgateway:9091', enabled=True)

        assert client.export() is True
        mock_push.assert_called_once()
        assert mock_push.call_args[1]['job'] == 'sysctl_tuning_web-1'

    @patch('sysctl_tuning.metrics_client.push_to_gateway', side_effect=OSError("connection refused"))
    def test_push_failure_is_not_raised(self, mock_push):
        client = TuningMetricsClient(host_id='web-1', pushgateway_url='http://pushgateway:9091', enabled=True)
        assert client.export() is False
