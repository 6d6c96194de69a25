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

import logging
import os
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
PROGRAM = "sysctl-tuning"

DEFAULT_TARGET = "/etc/sysctl.d/999-net-bbr-fq.conf"
DEFAULT_SYSCTL_CONF = "/etc/sysctl.conf"
DEFAULT_DROPIN_DIR = "/etc/sysctl.d"
DEFAULT_READONLY_DIRS = "/usr/local/lib/sysctl.d:/usr/lib/sysctl.d:/lib/sysctl.d:/run/sysctl.d"
DEFAULT_PROBE_TARGET = "1.1.1.1"
DEFAULT_FALLBACK_RTT_MS = 150
DEFAULT_BANDWIDTH_MBPS = 1000
DEFAULT_METRICS_TEXTFILE = "/var/lib/node_exporter/textfile_collector/sysctl_tuning.prom"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Build the run configuration from defaults and SYSCTL_TUNING_* variables.

    Args:
        environ: Environment mapping, os.environ when omitted

    Returns:
        Flat configuration dict; CLI flags are layered on top by the caller
    """
    env = os.environ if environ is None else environ

    readonly_dirs = env.get("SYSCTL_TUNING_READONLY_DIRS", DEFAULT_READONLY_DIRS)

    return {
        "target_path": env.get("SYSCTL_TUNING_TARGET", DEFAULT_TARGET),
        "sysctl_conf": env.get("SYSCTL_TUNING_SYSCTL_CONF", DEFAULT_SYSCTL_CONF),
        "dropin_dir": env.get("SYSCTL_TUNING_DROPIN_DIR", DEFAULT_DROPIN_DIR),
        "readonly_dirs": [d for d in readonly_dirs.split(":") if d],
        "probe_target": env.get("SYSCTL_TUNING_PROBE_TARGET", DEFAULT_PROBE_TARGET),
        "fallback_rtt_ms": _positive_int(env, "SYSCTL_TUNING_FALLBACK_RTT_MS", DEFAULT_FALLBACK_RTT_MS),
        "debug": _flag(env.get("SYSCTL_TUNING_DEBUG")),
        "metrics_enabled": _flag(env.get("SYSCTL_TUNING_METRICS_ENABLED", "false")),
        "metrics_textfile": env.get("SYSCTL_TUNING_METRICS_TEXTFILE", DEFAULT_METRICS_TEXTFILE),
        "pushgateway_url": env.get("PUSH_GATEWAY_URL"),
        "interface": env.get("SYSCTL_TUNING_INTERFACE"),
    }
