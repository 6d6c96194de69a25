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

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Aggressiveness(str, Enum):
    CONSERVATIVE = 'conservative'
    AGGRESSIVE = 'aggressive'


@dataclass(frozen=True)
class TuningInputs:
    """Validated inputs of one run. Built by preflight, consumed by the calculator."""
    memory_gib: Decimal
    bandwidth_mbps: int
    rtt_ms: Decimal
    aggressiveness: Aggressiveness = Aggressiveness.CONSERVATIVE


@dataclass(frozen=True)
class TierPolicy:
    """Sizing constants for one memory bracket of the aggressive mode"""
    name: str
    min_buffer_bytes: int
    cap_buffer_bytes: int
    ram_fraction: Decimal
    tcp_min_bytes: int
    tcp_default_bytes: int
    default_read_bytes: int
    default_write_bytes: int
    udp_min_bytes: int


@dataclass(frozen=True)
class DerivedBudget:
    """Buffer and backlog sizes derived from TuningInputs, all in bytes or entries"""
    aggressiveness: Aggressiveness
    bdp_bytes: int
    buffer_max_bytes: int
    buffer_max_mb: int
    tcp_read_min: int
    tcp_read_default: int
    tcp_read_max: int
    tcp_write_min: int
    tcp_write_default: int
    tcp_write_max: int
    queue_backlog_size: int
    syn_backlog_size: int
    netdev_backlog_size: int
    socket_default_read: int
    socket_default_write: int
    udp_read_min: int
    udp_write_min: int
    optmem_max: int
    tier: str
    strategy: str


@dataclass(frozen=True)
class RenderedDocument:
    """
    Content of the canonical sysctl.d artifact.

    ``lines`` is the full file content. The generation timestamp sits alone on
    ``lines[timestamp_index]`` so that ``body()`` can be compared across runs.
    """
    lines: Tuple[str, ...]
    entries: Tuple[Tuple[str, str], ...]
    timestamp_index: int

    def text(self) -> str:
        return '\n'.join(self.lines) + '\n'

    def body(self) -> str:
        kept = [line for index, line in enumerate(self.lines) if index != self.timestamp_index]
        return '\n'.join(kept) + '\n'

    def keys(self) -> List[str]:
        return [key for key, _ in self.entries]

    def as_dict(self) -> Dict[str, str]:
        return dict(self.entries)


@dataclass(frozen=True)
class KeyMatch:
    """An active assignment of a tracked key found in some file"""
    path: str
    line_number: int
    key: str
    line: str


@dataclass
class ManagedFile:
    """
    A file the resolver acted on (or would act on, in preview).

    action is one of 'commented', 'relocated', 'would-comment', 'would-relocate'.
    """
    path: str
    original_content: str
    action: str
    backup_path: Optional[str] = None
    matches: List[KeyMatch] = field(default_factory=list)


@dataclass
class ResolutionReport:
    neutralized: List[ManagedFile] = field(default_factory=list)
    relocated: List[ManagedFile] = field(default_factory=list)
    read_only_matches: List[KeyMatch] = field(default_factory=list)
    dry_run: bool = False

    @property
    def mutations(self) -> int:
        if self.dry_run:
            return 0
        return len(self.neutralized) + len(self.relocated)
