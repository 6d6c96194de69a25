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

"""Interface Qdisc Controller. Every operation is best-effort."""

import logging
from typing import Any, Dict

from effectuation.command import run_command

logger = logging.getLogger(__name__)

AGGRESSIVE_FQ_PARAMS = [
    "limit", "100000",
    "flow_limit", "1000",
    "quantum", "3028",
    "initial_quantum", "15140",
    "maxrate", "0",
    "buckets", "1024",
    "orphan_mask", "1023",
    "pacing",
    "ce_threshold", "0",
]

DEFAULT_QDISC = "pfifo_fast"


class QdiscController:

    def apply_fq(self, interface: str, aggressive: bool = False) -> Dict[str, Any]:
        """
        Replace the root qdisc of ``interface`` with fq.

        In aggressive mode the tuned fq parameters are tried first, falling
        back to plain fq when the kernel rejects them.
        """
        if aggressive:
            logger.info(f"Setting aggressive fq qdisc for interface {interface}...")
            rc, _, err = run_command(["tc", "qdisc", "replace", "dev", interface, "root", "fq", *AGGRESSIVE_FQ_PARAMS])
            if rc == 0:
                logger.info("TC qdisc applied with aggressive parameters")
                return {'success': True, 'interface': interface, 'qdisc': 'fq', 'parameters': 'aggressive'}
            logger.warning(f"Failed to apply aggressive TC qdisc, trying basic fq... ({err})")

        rc, _, err = run_command(["tc", "qdisc", "replace", "dev", interface, "root", "fq"])
        if rc == 0:
            logger.info(f"TC qdisc fq applied on {interface}")
            return {'success': True, 'interface': interface, 'qdisc': 'fq', 'parameters': 'default'}

        logger.warning(f"Failed to apply TC qdisc on {interface}: {err}")
        return {'success': False, 'interface': interface, 'error': err or 'tc failed'}

    def restore_default(self, interface: str) -> Dict[str, Any]:
        rc, _, err = run_command(["tc", "qdisc", "replace", "dev", interface, "root", DEFAULT_QDISC])
        if rc == 0:
            logger.info(f"Restored {DEFAULT_QDISC} qdisc on {interface}")
            return {'success': True, 'interface': interface, 'qdisc': DEFAULT_QDISC}
        logger.warning(f"Failed to restore default qdisc on {interface}: {err}")
        return {'success': False, 'interface': interface, 'error': err or 'tc failed'}

    def show(self, interface: str) -> str:
        rc, out, _ = run_command(["tc", "qdisc", "show", "dev", interface])
        if rc != 0 or not out:
            return "unknown"
        return out.splitlines()[0]
