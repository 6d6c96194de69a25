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
import re
import shutil
import statistics
from typing import List, Mapping, Optional, Tuple

from effectuation.command import run_command
from sysctl_tuning.calculator import round_half_up

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TARGET = "1.1.1.1"
FALLBACK_RTT_MS = 150
PING_COUNT = 4
PING_WAIT_SECONDS = 2

_REPLY_TIME = re.compile(r'time[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*ms')
_SUMMARY = re.compile(r'=\s*[0-9.]+/([0-9.]+)/[0-9.]+')


def resolve_probe_target(explicit: Optional[str] = None,
                         environ: Optional[Mapping[str, str]] = None,
                         default: str = DEFAULT_PROBE_TARGET) -> Tuple[str, str]:
    """
    Pick the host to ping.

    The SSH client address wins since it is the peer whose path we tune,
    then an explicit target, then the public default.

    Returns:
        (target, human readable description)
    """
    env = os.environ if environ is None else environ
    ssh_connection = env.get("SSH_CONNECTION", "").split()
    if ssh_connection:
        return ssh_connection[0], f"SSH client {ssh_connection[0]}"
    if explicit:
        return explicit, f"Client IP {explicit}"
    return default, f"Public address {default}"


def extract_reply_samples(output: str) -> List[float]:
    """Per-reply round-trip times from ping output"""
    return [float(value) for value in _REPLY_TIME.findall(output)]


def extract_summary_average(output: str) -> Optional[float]:
    match = _SUMMARY.search(output)
    if not match:
        return None
    return float(match.group(1))


def aggregate_samples(samples: List[Optional[float]], method: str = 'mean') -> Optional[float]:
    """
    Aggregate multiple samples using specified method

    Args:
        samples: List of sample values (may contain None)
        method: Aggregation method ('median', 'mean', 'min', 'max')

    Returns:
        Aggregated value, or None if no valid samples exist
    """
    valid_samples = [s for s in samples if s is not None and s != float('inf')]

    if not valid_samples:
        return None

    if method == 'median':
        return statistics.median(valid_samples)
    elif method == 'min':
        return min(valid_samples)
    elif method == 'max':
        return max(valid_samples)
    else:
        return statistics.mean(valid_samples)


def probe_rtt(target: str,
              count: int = PING_COUNT,
              wait_seconds: int = PING_WAIT_SECONDS,
              fallback_ms: int = FALLBACK_RTT_MS) -> int:
    """
    Measure the round-trip time to ``target`` in whole milliseconds.

    Never fails: a missing ping binary, an unreachable host or unparsable
    output all degrade to ``fallback_ms``.
    """
    if shutil.which("ping") is None:
        logger.warning(f"ping command not available, using default {fallback_ms} ms")
        return fallback_ms

    rc, out, err = run_command(["ping", "-c", str(count), "-W", str(wait_seconds), target],
                               timeout=count * (wait_seconds + 1) + 5)

    rtt = aggregate_samples(extract_reply_samples(out))
    if rtt is None:
        rtt = extract_summary_average(out)

    if rtt is None:
        logger.warning(f"Ping {target} failed ({err or 'no replies'}). Using default {fallback_ms} ms.")
        return fallback_ms

    logger.info(f"Detected average RTT: {rtt:.3f} ms")
    return round_half_up(rtt)
