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

"""
Orchestrator for a tuning run.

Order: preconditions -> conflict resolution (sysctl.conf, primary drop-in
dir, read-only dirs) -> calculator -> renderer -> installer -> kernel apply
-> qdisc -> verify. Conflict resolution completes before the artifact is
written and the artifact is published before apply runs.

Fatal errors stop the run with exit code 1. Apply, qdisc and verify
problems become warnings; the artifact stays installed.
"""

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from effectuation.qdisc import QdiscController
from effectuation.sysctl import SysctlApplier, VERIFY_KEYS
from reconnaissance import host
from sysctl_tuning import installer
from sysctl_tuning.calculator import calculate
from sysctl_tuning.conflict_resolver import ConflictResolver
from sysctl_tuning.errors import HostEnvironmentError, PreconditionError, TuningError
from sysctl_tuning.key_registry import tracked_keys
from sysctl_tuning.metrics_client import TuningMetricsClient
from sysctl_tuning.models import Aggressiveness, TuningInputs
from sysctl_tuning.renderer import render

logger = logging.getLogger(__name__)

CONGESTION_KEY = "net.ipv4.tcp_congestion_control"
EXPECTED_CONGESTION = "bbr"


class TuningOrchestrator:

    def __init__(self,
                 config: Dict[str, Any],
                 applier: Optional[SysctlApplier] = None,
                 qdisc: Optional[QdiscController] = None,
                 metrics: Optional[TuningMetricsClient] = None,
                 bbr_supported: Optional[bool] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.target_path = config['target_path']
        self.applier = applier or SysctlApplier(sysctl_conf=config['sysctl_conf'])
        self.qdisc = qdisc or QdiscController()
        self.metrics = metrics or TuningMetricsClient(textfile_path=config.get('metrics_textfile'),
                                                      pushgateway_url=config.get('pushgateway_url'),
                                                      enabled=config.get('metrics_enabled', False))
        self._bbr_supported = bbr_supported
        self._clock = clock or datetime.now

    @staticmethod
    def _new_summary(**extra) -> Dict[str, Any]:
        summary = {
            'status': 'completed',
            'exit_code': 0,
            'steps': [],
            'warnings': [],
            'errors': [],
        }
        summary.update(extra)
        return summary

    @staticmethod
    def _record(summary, step: str, success: bool = True, **details):
        entry = {'step': step, 'success': success}
        entry.update(details)
        summary['steps'].append(entry)

    @staticmethod
    def _warn(summary, message: str):
        logger.warning(message)
        summary['warnings'].append(message)

    def _warn_missing_optional(self, summary, missing: List[str]):
        if missing:
            self._warn(summary, f"Optional tools not found: {' '.join(missing)}; the steps using them may fail")

    def _fail(self, summary, step: str, error: TuningError) -> Dict[str, Any]:
        logger.error(f"{step} failed: {error}")
        self._record(summary, step, success=False, error=str(error))
        summary['errors'].append(f"{step}: {error}")
        summary['status'] = 'failed'
        summary['exit_code'] = 1
        return self._finish(summary)

    def _finish(self, summary) -> Dict[str, Any]:
        self.metrics.mark_outcome(summary['status'])
        self.metrics.export()
        return summary

    def check_preconditions(self, preview: bool = False) -> List[str]:
        """
        Root and the sysctl binary are required for anything but a preview.

        Returns:
            Optional tools (ip, tc, modprobe, ping) not found on PATH
        """
        if preview:
            return []
        if not host.is_root():
            raise PreconditionError(f"Please run as root (current UID: {os.geteuid()})")
        missing = host.missing_tools()
        if missing:
            raise HostEnvironmentError(f"Missing required tools: {' '.join(missing)}")
        return host.missing_tools(host.OPTIONAL_TOOLS)

    def bbr_supported(self) -> bool:
        if self._bbr_supported is None:
            self._bbr_supported = host.supports_bbr()
        return self._bbr_supported

    def _interface(self) -> Optional[str]:
        return self.config.get('interface') or host.default_interface()

    def run(self, inputs: TuningInputs, preview: bool = False) -> Dict[str, Any]:
        """
        Tune the host for ``inputs``.

        Args:
            inputs: Validated TuningInputs
            preview: Resolve conflicts in report-only mode and return the
                rendered document without installing or applying it

        Returns:
            Run summary with status, exit_code, steps, warnings, errors and,
            once computed, budget, document and effective values
        """
        summary = self._new_summary(preview=preview, target_path=self.target_path)
        logger.info(f"Starting run: memory={inputs.memory_gib}GiB bandwidth={inputs.bandwidth_mbps}Mbps "
                    f"rtt={inputs.rtt_ms}ms mode={inputs.aggressiveness.value} preview={preview}")

        step = 'preconditions'
        try:
            missing_optional = self.check_preconditions(preview)
            bbr = self.bbr_supported()
            self._record(summary, step, bbr_supported=bbr, missing_optional=missing_optional)
            self._warn_missing_optional(summary, missing_optional)

            step = 'resolve_conflicts'
            resolver = ConflictResolver(tracked_keys(inputs.aggressiveness, congestion_control=bbr),
                                        self.target_path, dry_run=preview)
            report = resolver.resolve(self.config['sysctl_conf'], self.config['dropin_dir'],
                                      self.config['readonly_dirs'])
            summary['resolution'] = report
            self.metrics.record_resolution(report)
            self._record(summary, step,
                         neutralized=[f.path for f in report.neutralized],
                         relocated=[f.path for f in report.relocated],
                         read_only_matches=len(report.read_only_matches))
            if report.read_only_matches:
                self._warn(summary, f"{len(report.read_only_matches)} tracked key assignment(s) remain in read-only directories")

            step = 'calculate'
            budget = calculate(inputs)
            summary['budget'] = budget
            self.metrics.record_budget(budget)
            self._record(summary, step, bdp_bytes=budget.bdp_bytes, buffer_max_bytes=budget.buffer_max_bytes)

            step = 'render'
            document = render(budget, inputs, congestion_control_supported=bbr, generated_at=self._clock())
            summary['document'] = document
            self._record(summary, step, keys=len(document.entries))

            if preview:
                logger.info(f"Preview mode: {self.target_path} not written, nothing applied")
                self._record(summary, 'install', skipped=True)
                return self._finish(summary)

            step = 'install'
            installer.install_document(document, self.target_path)
            self._record(summary, step, path=self.target_path)
        except TuningError as e:
            return self._fail(summary, step, e)

        self._apply(summary, bbr, aggressive=inputs.aggressiveness == Aggressiveness.AGGRESSIVE)
        return self._finish(summary)

    def _apply(self, summary, bbr: bool, aggressive: bool):
        if bbr:
            self.applier.load_module("tcp_bbr")

        result = self.applier.apply()
        self.metrics.record_apply(result.get('success', False))
        self._record(summary, 'apply', success=result.get('success', False), method=result.get('method'))
        if not result.get('success'):
            self._warn(summary, f"Kernel apply incomplete ({result.get('error')}); {self.target_path} takes effect after reboot")

        interface = self._interface()
        summary['interface'] = interface
        if interface:
            qdisc_result = self.qdisc.apply_fq(interface, aggressive=aggressive)
            self._record(summary, 'qdisc', success=qdisc_result.get('success', False), interface=interface)
            if not qdisc_result.get('success'):
                self._warn(summary, f"Failed to apply fq qdisc on {interface}")
            summary['qdisc'] = self.qdisc.show(interface)

        effective = self.applier.query_many(VERIFY_KEYS)
        summary['effective'] = effective
        current = effective.get(CONGESTION_KEY)
        verified = not bbr or current == EXPECTED_CONGESTION
        self._record(summary, 'verify', success=verified)
        if bbr and not verified:
            self._warn(summary, f"BBR not enabled (current: {current}), please check kernel support")

    def uninstall(self) -> Dict[str, Any]:
        """
        Remove the canonical artifact and re-apply what remains.

        Files neutralized by earlier runs are left as they are; restoring
        them from their backups is a manual step.
        """
        summary = self._new_summary(uninstall=True, target_path=self.target_path)
        logger.info("Uninstalling sysctl-tuning configuration...")

        step = 'preconditions'
        try:
            missing_optional = self.check_preconditions()
            self._record(summary, step, missing_optional=missing_optional)
            self._warn_missing_optional(summary, missing_optional)

            step = 'remove'
            removed = installer.uninstall(self.target_path)
            summary['removed'] = removed
            self._record(summary, step, removed=removed)
        except TuningError as e:
            return self._fail(summary, step, e)

        result = self.applier.apply()
        self._record(summary, 'apply', success=result.get('success', False), method=result.get('method'))
        if not result.get('success'):
            self._warn(summary, f"Re-applying remaining configuration failed ({result.get('error')})")

        interface = self._interface()
        summary['interface'] = interface
        if interface:
            restore = self.qdisc.restore_default(interface)
            self._record(summary, 'qdisc', success=restore.get('success', False), interface=interface)
            if not restore.get('success'):
                self._warn(summary, f"Failed to restore default qdisc on {interface}")

        logger.info("sysctl-tuning configuration uninstalled")
        return self._finish(summary)
