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
Kernel Sysctl Interface.

Applies the merged sysctl configuration tree to the running kernel and reads
back effective values. Failures here are reported, never raised: the
installed artifact still takes effect on the next boot.
"""

import glob
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from effectuation.command import run_command

logger = logging.getLogger(__name__)

# Load order used when `sysctl --system` is unavailable (BusyBox)
SYSCTL_LOAD_DIRS = [
    "/run/sysctl.d",
    "/etc/sysctl.d",
    "/usr/local/lib/sysctl.d",
    "/usr/lib/sysctl.d",
    "/lib/sysctl.d",
]
SYSCTL_CONF = "/etc/sysctl.conf"

VERIFY_KEYS = [
    "net.ipv4.tcp_congestion_control",
    "net.core.default_qdisc",
    "net.core.rmem_max",
    "net.core.wmem_max",
    "net.ipv4.tcp_rmem",
    "net.ipv4.tcp_wmem",
    "net.core.somaxconn",
    "net.ipv4.tcp_max_syn_backlog",
    "net.core.netdev_max_backlog",
    "net.ipv4.udp_rmem_min",
    "net.ipv4.udp_wmem_min",
]

UNKNOWN = "unknown"


def collect_config_files(dirs: Iterable[str] = SYSCTL_LOAD_DIRS, sysctl_conf: str = SYSCTL_CONF) -> List[str]:
    files = []
    for directory in dirs:
        if os.path.isdir(directory):
            files.extend(sorted(glob.glob(os.path.join(directory, "*.conf"))))
    if os.path.isfile(sysctl_conf):
        files.append(sysctl_conf)
    return files


class SysctlApplier:

    def __init__(self, dirs: Optional[List[str]] = None, sysctl_conf: str = SYSCTL_CONF):
        self.dirs = list(SYSCTL_LOAD_DIRS if dirs is None else dirs)
        self.sysctl_conf = sysctl_conf

    def load_module(self, module: str = "tcp_bbr") -> bool:
        """Best-effort modprobe; a built-in algorithm needs no module"""
        rc, _, err = run_command(["modprobe", module])
        if rc != 0:
            logger.debug(f"modprobe {module} failed: {err}")
            return False
        return True

    def apply(self) -> Dict[str, Any]:
        """
        Apply the whole configuration tree.

        Tries ``sysctl --system`` first, then ``sysctl -e -p`` over every
        config file, then each file on its own.

        Returns:
            dict with success, method and failed_files
        """
        logger.info("Applying sysctl configuration...")

        rc, _, err = run_command(["sysctl", "--system"])
        if rc == 0:
            logger.info("Applied sysctl settings via --system")
            return {'success': True, 'method': 'system', 'failed_files': []}
        logger.debug(f"sysctl --system failed: {err}")

        files = collect_config_files(self.dirs, self.sysctl_conf)
        if not files:
            logger.info("No sysctl configuration files found")
            return {'success': True, 'method': 'none', 'failed_files': []}

        rc, _, err = run_command(["sysctl", "-e", "-p", *files])
        if rc == 0:
            logger.info(f"Applied {len(files)} sysctl file(s)")
            return {'success': True, 'method': 'files', 'failed_files': []}

        logger.warning("sysctl apply failed, trying individual files...")
        failed = []
        for path in files:
            rc, _, err = run_command(["sysctl", "-e", "-p", path])
            if rc != 0:
                logger.warning(f"Failed to apply: {path} ({err})")
                failed.append(path)
            else:
                logger.debug(f"Applied: {path}")

        return {
            'success': not failed,
            'method': 'per_file',
            'failed_files': failed,
            'error': f"Failed to apply {len(failed)} file(s)" if failed else None,
        }

    def query(self, key: str) -> Optional[str]:
        rc, out, _ = run_command(["sysctl", "-n", key])
        if rc != 0:
            return None
        # tcp_rmem and friends come back tab separated
        return " ".join(out.split())

    def query_many(self, keys: Iterable[str] = VERIFY_KEYS) -> Dict[str, str]:
        effective = {}
        for key in keys:
            value = self.query(key)
            effective[key] = UNKNOWN if value is None else value
        return effective
