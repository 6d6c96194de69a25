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
Host facts needed before a run: memory size, default interface, kernel BBR
support, privilege and required tools.
"""

import logging
import os
import platform
import re
import shutil
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

import psutil

from effectuation.command import run_command
from sysctl_tuning.calculator import GIB

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_GIB = Decimal('1')
BBR_MIN_KERNEL = (4, 9)
REQUIRED_TOOLS = ["sysctl"]
OPTIONAL_TOOLS = ["ip", "tc", "modprobe", "ping"]
EXCLUDED_INTERFACE_PREFIXES = ("lo", "docker")

_KERNEL_VERSION = re.compile(r'^(\d+)\.(\d+)')
_ROUTE_DEV = re.compile(r'\bdev\s+(\S+)')


def detect_memory_gib() -> Decimal:
    """Total memory in GiB with two decimals; 1 GiB when detection fails"""
    try:
        total_bytes = psutil.virtual_memory().total
    except Exception as e:
        logger.warning(f"Failed to detect memory ({e}), using default {DEFAULT_MEMORY_GIB} GiB")
        return DEFAULT_MEMORY_GIB

    if not total_bytes or total_bytes <= 0:
        logger.warning(f"Failed to detect memory, using default {DEFAULT_MEMORY_GIB} GiB")
        return DEFAULT_MEMORY_GIB

    memory_gib = (Decimal(total_bytes) / GIB).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    logger.debug(f"Detected memory: {memory_gib} GiB ({total_bytes} bytes)")
    return memory_gib


def _usable_interface(name: str) -> bool:
    return bool(name) and not name.startswith(EXCLUDED_INTERFACE_PREFIXES)


def default_interface() -> Optional[str]:
    """
    Interface carrying the default route, IPv4 first then IPv6, falling back
    to the first interface that is up. Loopback and docker bridges are skipped.
    """
    for family in ("-4", "-6"):
        rc, out, _ = run_command(["ip", "-o", family, "route", "show", "to", "default"])
        if rc != 0:
            continue
        for line in out.splitlines():
            match = _ROUTE_DEV.search(line)
            if match and _usable_interface(match.group(1)):
                logger.debug(f"Detected interface: {match.group(1)}")
                return match.group(1)

    try:
        stats = psutil.net_if_stats()
    except Exception as e:
        logger.warning(f"Could not list network interfaces: {e}")
        return None

    for name in sorted(stats):
        if stats[name].isup and _usable_interface(name):
            logger.debug(f"Detected interface (first up): {name}")
            return name

    logger.warning("Could not detect default interface")
    return None


def parse_kernel_version(release: str) -> Optional[Tuple[int, int]]:
    match = _KERNEL_VERSION.match(release)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def supports_bbr(release: Optional[str] = None) -> bool:
    release = release or platform.release()
    version = parse_kernel_version(release)
    if version is None:
        logger.warning(f"Cannot parse kernel release {release!r}, assuming BBR support")
        return True
    if version < BBR_MIN_KERNEL:
        logger.warning(f"Kernel version {release} is too old for BBR (requires 4.9+). BBR settings will be skipped.")
        return False
    logger.info(f"Current kernel version: {release}")
    return True


def is_root() -> bool:
    return os.geteuid() == 0


def missing_tools(tools: Iterable[str] = REQUIRED_TOOLS) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]
