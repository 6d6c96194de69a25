#
# Copyright (c) 2019 Matthias Tafelmeier.
#
# This file is part of sysctl-tuning
#
# sysctl-tuning is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# sysctl-tuning is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with sysctl-tuning. If not, see <http://www.gnu.org/licenses/>.
#

import pytest
import sys
import os
from decimal import Decimal

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from sysctl_tuning import preflight
from sysctl_tuning.models import Aggressiveness, TuningInputs


class TestPreflightValidation:
    """Test preflight validation logic"""

    def test_valid_inputs_pass(self):
        """Test that valid string inputs pass preflight"""
        result = preflight.main(memory_gib='4', bandwidth_mbps='1000', rtt_ms='150')

        assert result['result'] == 'SUCCESS'
        assert result['data']['message'] == 'Preflight validation passed'
        inputs = result['data']['inputs']
        assert isinstance(inputs, TuningInputs)
        assert inputs.memory_gib == Decimal('4')
        assert inputs.bandwidth_mbps == 1000
        assert inputs.rtt_ms == Decimal('150')
        assert inputs.aggressiveness == Aggressiveness.CONSERVATIVE

    def test_numeric_types_accepted(self):
        """Test that numbers, not only strings, are accepted"""
        result = preflight.main(memory_gib=2.5, bandwidth_mbps=500, rtt_ms=Decimal('12.5'))

        assert result['result'] == 'SUCCESS'
        assert result['data']['inputs'].memory_gib == Decimal('2.5')

    def test_aggressive_mode(self):
        """Test that mode names are case insensitive"""
        result = preflight.main(memory_gib='4', bandwidth_mbps='1000', rtt_ms='150', aggressiveness='AGGRESSIVE')

        assert result['result'] == 'SUCCESS'
        assert result['data']['inputs'].aggressiveness == Aggressiveness.AGGRESSIVE

    def test_unknown_mode_fails(self):
        result = preflight.main(memory_gib='4', bandwidth_mbps='1000', rtt_ms='150', aggressiveness='ludicrous')

        assert result['result'] == 'FAILURE'
        assert 'unsupported mode' in result['error']

    def test_missing_values_fail(self):
        """Test that missing values are reported"""
        result = preflight.main()

        assert result['result'] == 'FAILURE'
        assert result['error'].count('missing value') == 3

    def test_non_numeric_fails(self):
        result = preflight.main(memory_gib='four', bandwidth_mbps='1000', rtt_ms='150')

        assert result['result'] == 'FAILURE'
        assert 'memory_gib: must be numeric' in result['error']

    def test_fractional_bandwidth_fails(self):
        """Test that bandwidth must be a whole number"""
        result = preflight.main(memory_gib='4', bandwidth_mbps='1.5', rtt_ms='150')

        assert result['result'] == 'FAILURE'
        assert 'bandwidth_mbps: must be a whole number' in result['error']

    @pytest.mark.parametrize("value", ['nan', 'inf', '-Infinity'])
    def test_non_finite_fails(self, value):
        result = preflight.main(memory_gib='4', bandwidth_mbps='1000', rtt_ms=value)
        assert result['result'] == 'FAILURE'

    @pytest.mark.parametrize("memory,bandwidth,rtt", [
        ('0.05', '1000', '150'),
        ('2048', '1000', '150'),
        ('4', '0', '150'),
        ('4', '100001', '150'),
        ('4', '1000', '0'),
        ('4', '1000', '10001'),
    ])
    def test_out_of_range_fails(self, memory, bandwidth, rtt):
        """Test that values outside the supported ranges are rejected"""
        result = preflight.main(memory_gib=memory, bandwidth_mbps=bandwidth, rtt_ms=rtt)

        assert result['result'] == 'FAILURE'
        assert 'out of range' in result['error']

    @pytest.mark.parametrize("memory,bandwidth,rtt", [
        ('0.1', '1', '1'),
        ('1024', '100000', '10000'),
    ])
    def test_range_bounds_inclusive(self, memory, bandwidth, rtt):
        result = preflight.main(memory_gib=memory, bandwidth_mbps=bandwidth, rtt_ms=rtt)
        assert result['result'] == 'SUCCESS'

    def test_multiple_errors_aggregated(self):
        """Test that all errors are reported, not just the first"""
        result = preflight.main(memory_gib='0', bandwidth_mbps='fast', rtt_ms='-5', aggressiveness='x')

        assert result['result'] == 'FAILURE'
        assert result['error'].startswith('Preflight validation failed:')
        assert result['error'].count('\n  - ') == 4
