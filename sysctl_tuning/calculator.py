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
Tuning Parameter Calculator.

Pure function from TuningInputs to DerivedBudget. Byte counts are rounded
half-up, bucket selection floors. Inputs are assumed validated by preflight.
"""

import logging
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP

from sysctl_tuning.models import Aggressiveness, DerivedBudget, TierPolicy, TuningInputs

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
GIB = 1024 * MIB

# Mbps * ms -> bytes: 1_000_000 / 8 / 1000
BYTES_PER_MBPS_MS = 125

# Conservative mode
CONSERVATIVE_RAM_FRACTION = Decimal('0.03')
CONSERVATIVE_CAP_BYTES = 64 * MIB
BUCKET_LADDER_MB = (64, 32, 16, 8, 4)
BUCKET_FLOOR_MB = 4

CONSERVATIVE_TCP_READ = (4096, 87380)
CONSERVATIVE_TCP_WRITE = (4096, 65536)
CONSERVATIVE_QUEUES = dict(queue_backlog_size=8192, syn_backlog_size=8192, netdev_backlog_size=16384)
CONSERVATIVE_UDP_MIN = 8192
CONSERVATIVE_OPTMEM = 65536

# (minimum bucket in MiB, default read, default write), first match wins
CONSERVATIVE_DEFAULTS = (
    (32, 262144, 524288),
    (8, 131072, 262144),
    (0, 131072, 131072),
)

# Aggressive mode, keyed on memory rounded half-even to whole GiB, first match wins
TIER_POLICIES = (
    (2, TierPolicy(name='large',
                   min_buffer_bytes=256 * MIB,
                   cap_buffer_bytes=512 * MIB,
                   ram_fraction=Decimal('0.10'),
                   tcp_min_bytes=16384,
                   tcp_default_bytes=524288,
                   default_read_bytes=262144,
                   default_write_bytes=524288,
                   udp_min_bytes=65536)),
    (1, TierPolicy(name='medium',
                   min_buffer_bytes=128 * MIB,
                   cap_buffer_bytes=256 * MIB,
                   ram_fraction=Decimal('0.10'),
                   tcp_min_bytes=8192,
                   tcp_default_bytes=262144,
                   default_read_bytes=131072,
                   default_write_bytes=262144,
                   udp_min_bytes=32768)),
    (0, TierPolicy(name='small',
                   min_buffer_bytes=64 * MIB,
                   cap_buffer_bytes=128 * MIB,
                   ram_fraction=Decimal('0.08'),
                   tcp_min_bytes=8192,
                   tcp_default_bytes=131072,
                   default_read_bytes=131072,
                   default_write_bytes=131072,
                   udp_min_bytes=16384)),
)

AGGRESSIVE_BACKLOG = 65535
AGGRESSIVE_OPTMEM = 262144


def _decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value) -> int:
    return int(_decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_bdp_bytes(bandwidth_mbps, rtt_ms) -> int:
    return round_half_up(_decimal(bandwidth_mbps) * BYTES_PER_MBPS_MS * _decimal(rtt_ms))


def memory_bytes(memory_gib) -> int:
    return round_half_up(_decimal(memory_gib) * GIB)


def bucket_mb(candidate_bytes: int) -> int:
    """Largest ladder value not above the candidate's whole MiB count, floored at 4"""
    candidate_mb = candidate_bytes // MIB
    for bucket in BUCKET_LADDER_MB:
        if candidate_mb >= bucket:
            return bucket
    return BUCKET_FLOOR_MB


def select_tier(memory_gib) -> TierPolicy:
    # 0.5 GiB stays in the small tier
    rounded_gib = int(_decimal(memory_gib).quantize(Decimal(1), rounding=ROUND_HALF_EVEN))
    for threshold, policy in TIER_POLICIES:
        if rounded_gib >= threshold:
            return policy
    return TIER_POLICIES[-1][1]


def clip(value: int, lower: int, upper: int) -> int:
    if value < lower:
        value = lower
    if value > upper:
        value = upper
    return value


def _conservative(inputs: TuningInputs, bdp: int) -> DerivedBudget:
    ram_share = round_half_up(memory_bytes(inputs.memory_gib) * CONSERVATIVE_RAM_FRACTION)
    candidate = min(2 * bdp, ram_share, CONSERVATIVE_CAP_BYTES)
    bucket = bucket_mb(candidate)
    buffer_max = bucket * MIB

    for minimum_mb, default_read, default_write in CONSERVATIVE_DEFAULTS:
        if bucket >= minimum_mb:
            break

    logger.debug(f"Conservative candidate {candidate} bytes (2*BDP={2 * bdp}, 3%RAM={ram_share}) -> bucket {bucket} MiB")

    return DerivedBudget(
        aggressiveness=Aggressiveness.CONSERVATIVE,
        bdp_bytes=bdp,
        buffer_max_bytes=buffer_max,
        buffer_max_mb=bucket,
        tcp_read_min=CONSERVATIVE_TCP_READ[0],
        tcp_read_default=CONSERVATIVE_TCP_READ[1],
        tcp_read_max=buffer_max,
        tcp_write_min=CONSERVATIVE_TCP_WRITE[0],
        tcp_write_default=CONSERVATIVE_TCP_WRITE[1],
        tcp_write_max=buffer_max,
        socket_default_read=default_read,
        socket_default_write=default_write,
        udp_read_min=CONSERVATIVE_UDP_MIN,
        udp_write_min=CONSERVATIVE_UDP_MIN,
        optmem_max=CONSERVATIVE_OPTMEM,
        tier=f"bucket-{bucket}MiB",
        strategy=f"min(2*BDP, 3%*RAM, 64MiB) -> bucket {bucket} MiB",
        **CONSERVATIVE_QUEUES,
    )


def _aggressive(inputs: TuningInputs, bdp: int) -> DerivedBudget:
    policy = select_tier(inputs.memory_gib)
    ram_share = round_half_up(memory_bytes(inputs.memory_gib) * policy.ram_fraction)
    candidate = max(4 * bdp, ram_share)
    buffer_max = clip(candidate, policy.min_buffer_bytes, policy.cap_buffer_bytes)

    logger.debug(f"Aggressive tier {policy.name}: candidate {candidate} bytes (4*BDP={4 * bdp}, RAM share={ram_share}) -> {buffer_max}")

    return DerivedBudget(
        aggressiveness=Aggressiveness.AGGRESSIVE,
        bdp_bytes=bdp,
        buffer_max_bytes=buffer_max,
        buffer_max_mb=buffer_max // MIB,
        tcp_read_min=policy.tcp_min_bytes,
        tcp_read_default=policy.tcp_default_bytes,
        tcp_read_max=buffer_max,
        tcp_write_min=policy.tcp_min_bytes,
        tcp_write_default=policy.tcp_default_bytes,
        tcp_write_max=buffer_max,
        queue_backlog_size=AGGRESSIVE_BACKLOG,
        syn_backlog_size=AGGRESSIVE_BACKLOG,
        netdev_backlog_size=AGGRESSIVE_BACKLOG,
        socket_default_read=policy.default_read_bytes,
        socket_default_write=policy.default_write_bytes,
        udp_read_min=policy.udp_min_bytes,
        udp_write_min=policy.udp_min_bytes,
        optmem_max=AGGRESSIVE_OPTMEM,
        tier=policy.name,
        strategy=(f"max(4*BDP, {policy.ram_fraction}*RAM) clipped to "
                  f"[{policy.min_buffer_bytes // MIB}, {policy.cap_buffer_bytes // MIB}] MiB "
                  f"(tier {policy.name}) -> {buffer_max // MIB} MiB"),
    )


def calculate(inputs: TuningInputs) -> DerivedBudget:
    bdp = compute_bdp_bytes(inputs.bandwidth_mbps, inputs.rtt_ms)
    if inputs.aggressiveness == Aggressiveness.AGGRESSIVE:
        return _aggressive(inputs, bdp)
    return _conservative(inputs, bdp)
