"""
Tuning Metrics Client

Thin wrapper around prometheus_client exposing the outcome of one tuning
run: computed budget, conflicts handled, apply result and run status.

Export is off unless SYSCTL_TUNING_METRICS_ENABLED=true. Metrics are then
written to a node_exporter textfile and, when PUSH_GATEWAY_URL is set,
pushed to a Push Gateway.

Usage:
    metrics = TuningMetricsClient(host_id='web-1', textfile_path='/var/lib/node_exporter/textfile_collector/sysctl_tuning.prom')
    metrics.record_budget(budget)
    metrics.mark_outcome('completed')
    metrics.export()
"""

import os
import socket
import time
import logging
from typing import Optional
from prometheus_client import CollectorRegistry, Gauge, Counter, push_to_gateway, write_to_textfile

from sysctl_tuning.models import DerivedBudget, ResolutionReport

logger = logging.getLogger(__name__)


class TuningMetricsClient:
    """
    Prometheus metrics for a sysctl-tuning run.
    """

    def __init__(self, host_id: Optional[str] = None, textfile_path: Optional[str] = None,
                 pushgateway_url: Optional[str] = None, enabled: Optional[bool] = None):
        """
        Args:
            host_id: Label identifying this host (default: hostname)
            textfile_path: node_exporter textfile destination
            pushgateway_url: Push Gateway URL (default from env, unset means no push)
            enabled: Overrides SYSCTL_TUNING_METRICS_ENABLED
        """
        self.host_id = host_id or socket.gethostname()
        self.textfile_path = textfile_path
        self.pushgateway_url = pushgateway_url or os.getenv("PUSH_GATEWAY_URL")

        if enabled is None:
            enabled = os.getenv("SYSCTL_TUNING_METRICS_ENABLED", "false").lower() == "true"
        self.enabled = enabled

        if not self.enabled:
            logger.debug("Metrics export disabled")
            return

        self.registry = CollectorRegistry()
        self._init_metrics()

        logger.debug(f"Initialized {self.__class__.__name__} for {self.host_id}")

    def _init_metrics(self):
        """Initialize Prometheus metrics"""
        self._bdp_bytes = Gauge(
            'sysctl_tuning_bdp_bytes',
            'Computed bandwidth-delay product',
            ['host', 'mode'],
            registry=self.registry
        )

        self._buffer_max_bytes = Gauge(
            'sysctl_tuning_buffer_max_bytes',
            'Maximum socket buffer written to the artifact',
            ['host', 'mode', 'tier'],
            registry=self.registry
        )

        self._conflicts = Counter(
            'sysctl_tuning_conflicts_total',
            'Conflicting configuration files or lines handled',
            ['host', 'action'],
            registry=self.registry
        )

        self._apply = Gauge(
            'sysctl_tuning_apply_success',
            'Whether the kernel accepted the configuration (1) or not (0)',
            ['host'],
            registry=self.registry
        )

        self._run_status = Gauge(
            'sysctl_tuning_run_status',
            'Outcome of the last run',
            ['host', 'status'],
            registry=self.registry
        )

        self._last_run = Gauge(
            'sysctl_tuning_last_run_timestamp_seconds',
            'Unix time of the last run',
            ['host'],
            registry=self.registry
        )

    def record_budget(self, budget: DerivedBudget):
        if not self.enabled:
            return
        mode = budget.aggressiveness.value
        self._bdp_bytes.labels(host=self.host_id, mode=mode).set(budget.bdp_bytes)
        self._buffer_max_bytes.labels(host=self.host_id, mode=mode, tier=budget.tier).set(budget.buffer_max_bytes)

    def record_resolution(self, report: ResolutionReport):
        if not self.enabled:
            return
        self._conflicts.labels(host=self.host_id, action='commented').inc(len(report.neutralized))
        self._conflicts.labels(host=self.host_id, action='relocated').inc(len(report.relocated))
        self._conflicts.labels(host=self.host_id, action='read_only').inc(len(report.read_only_matches))

    def record_apply(self, success: bool):
        if not self.enabled:
            return
        self._apply.labels(host=self.host_id).set(1 if success else 0)

    def mark_outcome(self, status: str):
        """
        Record the run status.

        Args:
            status: 'completed' or 'failed'
        """
        if not self.enabled:
            return
        for candidate in ('completed', 'failed'):
            self._run_status.labels(host=self.host_id, status=candidate).set(1 if candidate == status else 0)
        self._last_run.labels(host=self.host_id).set(time.time())

    def export(self) -> bool:
        """
        Write and/or push all metrics.

        Returns:
            True if every configured export succeeded, False otherwise
        """
        if not self.enabled:
            return False

        ok = True
        if self.textfile_path:
            try:
                write_to_textfile(self.textfile_path, self.registry)
                logger.debug(f"Wrote metrics to {self.textfile_path}")
            except Exception as e:
                logger.warning(f"Failed to write metrics to {self.textfile_path}: {e}")
                ok = False

        if self.pushgateway_url:
            try:
                push_to_gateway(
                    self.pushgateway_url,
                    job=f'sysctl_tuning_{self.host_id}',
                    registry=self.registry
                )
                logger.debug(f"Pushed metrics to {self.pushgateway_url}")
            except Exception as e:
                logger.warning(f"Failed to push metrics to {self.pushgateway_url}: {e}")
                ok = False

        return ok
