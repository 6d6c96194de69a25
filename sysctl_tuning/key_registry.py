"""
Key Registry for sysctl-tuning.

These are the only sysctl keys this tool writes to its canonical artifact and
therefore the only keys it may neutralize elsewhere in the configuration
tree. Insertion order is the canonical order of the rendered document.

Entries either carry a fixed ``value`` or name the DerivedBudget attribute(s)
they are ``derived`` from. ``modes`` lists the aggressiveness levels that emit
the key.
"""

from typing import Dict, List

from sysctl_tuning.models import Aggressiveness

BOTH = (Aggressiveness.CONSERVATIVE, Aggressiveness.AGGRESSIVE)
AGGRESSIVE_ONLY = (Aggressiveness.AGGRESSIVE,)

SECTIONS = [
    ("congestion", "Congestion Control & Queue Discipline"),
    ("core_buffers", "Core Buffer Sizes (IPv4 and IPv6)"),
    ("tcp_buffers", "TCP Buffer Sizes (min default max)"),
    ("tcp_performance", "TCP Performance"),
    ("queues", "Connection Queue Sizes"),
    ("keepalive", "TCP Keepalive & Timeouts"),
    ("reuse", "TCP Connection Reuse & Limits"),
    ("ports_udp", "Port Range & UDP"),
    ("ipv6", "IPv6"),
]

KEY_REGISTRY = {
    # =========================================================================
    # CONGESTION CONTROL & QDISC
    # =========================================================================
    "net.core.default_qdisc": {
        "section": "congestion",
        "modes": BOTH,
        "value": "fq",
        "congestion_control": True,
        "description": "Default queue discipline for new interfaces",
    },
    "net.ipv4.tcp_congestion_control": {
        "section": "congestion",
        "modes": BOTH,
        "value": "bbr",
        "congestion_control": True,
        "description": "TCP congestion control algorithm",
    },

    # =========================================================================
    # CORE BUFFERS (net.core.*)
    # =========================================================================
    "net.core.rmem_default": {
        "section": "core_buffers",
        "modes": BOTH,
        "derived": ("socket_default_read",),
        "description": "Default socket receive buffer",
    },
    "net.core.wmem_default": {
        "section": "core_buffers",
        "modes": BOTH,
        "derived": ("socket_default_write",),
        "description": "Default socket send buffer",
    },
    "net.core.rmem_max": {
        "section": "core_buffers",
        "modes": BOTH,
        "derived": ("buffer_max_bytes",),
        "description": "Maximum socket receive buffer",
    },
    "net.core.wmem_max": {
        "section": "core_buffers",
        "modes": BOTH,
        "derived": ("buffer_max_bytes",),
        "description": "Maximum socket send buffer",
    },
    "net.core.optmem_max": {
        "section": "core_buffers",
        "modes": BOTH,
        "derived": ("optmem_max",),
        "description": "Maximum ancillary buffer size per socket",
    },

    # =========================================================================
    # TCP BUFFERS
    # =========================================================================
    "net.ipv4.tcp_rmem": {
        "section": "tcp_buffers",
        "modes": BOTH,
        "derived": ("tcp_read_min", "tcp_read_default", "tcp_read_max"),
        "description": "TCP read buffer (min, default, max)",
    },
    "net.ipv4.tcp_wmem": {
        "section": "tcp_buffers",
        "modes": BOTH,
        "derived": ("tcp_write_min", "tcp_write_default", "tcp_write_max"),
        "description": "TCP write buffer (min, default, max)",
    },

    # =========================================================================
    # TCP PERFORMANCE
    # =========================================================================
    "net.ipv4.tcp_mtu_probing": {
        "section": "tcp_performance",
        "modes": BOTH,
        "value": "1",
        "description": "Packetization layer path MTU discovery",
    },
    "net.ipv4.tcp_slow_start_after_idle": {
        "section": "tcp_performance",
        "modes": BOTH,
        "value": "0",
        "description": "Reset congestion window after idle",
    },
    "net.ipv4.tcp_notsent_lowat": {
        "section": "tcp_performance",
        "modes": BOTH,
        "value": "16384",
        "description": "Unsent bytes threshold for write readiness",
    },
    "net.ipv4.tcp_fastopen": {
        "section": "tcp_performance",
        "modes": BOTH,
        "value": "3",
        "description": "TCP Fast Open for client and server",
    },
    "net.ipv4.tcp_window_scaling": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "RFC 1323 window scaling",
    },
    "net.ipv4.tcp_timestamps": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "RFC 1323 timestamps",
    },
    "net.ipv4.tcp_sack": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "Selective acknowledgements",
    },
    "net.ipv4.tcp_no_metrics_save": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "Do not cache metrics of closed connections",
    },
    "net.ipv4.tcp_moderate_rcvbuf": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "0",
        "description": "Receive buffer auto-tuning",
    },
    "net.ipv4.tcp_ecn": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "Explicit Congestion Notification",
    },
    "net.ipv4.tcp_ecn_fallback": {
        "section": "tcp_performance",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "Fall back to non-ECN on broken paths",
    },

    # =========================================================================
    # QUEUES
    # =========================================================================
    "net.core.somaxconn": {
        "section": "queues",
        "modes": BOTH,
        "derived": ("queue_backlog_size",),
        "description": "Listen backlog limit",
    },
    "net.ipv4.tcp_max_syn_backlog": {
        "section": "queues",
        "modes": BOTH,
        "derived": ("syn_backlog_size",),
        "description": "Pending SYN queue length",
    },
    "net.core.netdev_max_backlog": {
        "section": "queues",
        "modes": BOTH,
        "derived": ("netdev_backlog_size",),
        "description": "Device receive backlog",
    },
    "net.core.netdev_budget": {
        "section": "queues",
        "modes": AGGRESSIVE_ONLY,
        "value": "50000",
        "description": "Packets processed per softirq cycle",
    },
    "net.core.netdev_budget_usecs": {
        "section": "queues",
        "modes": AGGRESSIVE_ONLY,
        "value": "5000",
        "description": "Time budget per softirq cycle",
    },

    # =========================================================================
    # KEEPALIVE & TIMEOUTS
    # =========================================================================
    "net.ipv4.tcp_keepalive_time": {
        "section": "keepalive",
        "modes": AGGRESSIVE_ONLY,
        "value": "300",
        "description": "Idle time before keepalive probes",
    },
    "net.ipv4.tcp_keepalive_intvl": {
        "section": "keepalive",
        "modes": AGGRESSIVE_ONLY,
        "value": "15",
        "description": "Interval between keepalive probes",
    },
    "net.ipv4.tcp_keepalive_probes": {
        "section": "keepalive",
        "modes": AGGRESSIVE_ONLY,
        "value": "5",
        "description": "Unanswered probes before drop",
    },
    "net.ipv4.tcp_fin_timeout": {
        "section": "keepalive",
        "modes": AGGRESSIVE_ONLY,
        "value": "10",
        "description": "FIN_WAIT_2 timeout in seconds",
    },

    # =========================================================================
    # REUSE & LIMITS
    # =========================================================================
    "net.ipv4.tcp_tw_reuse": {
        "section": "reuse",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "Reuse TIME_WAIT sockets",
    },
    "net.ipv4.tcp_max_tw_buckets": {
        "section": "reuse",
        "modes": AGGRESSIVE_ONLY,
        "value": "65535",
        "description": "Maximum TIME_WAIT sockets",
    },
    "net.ipv4.tcp_max_orphans": {
        "section": "reuse",
        "modes": AGGRESSIVE_ONLY,
        "value": "32768",
        "description": "Maximum orphaned sockets",
    },
    "net.ipv4.tcp_syncookies": {
        "section": "reuse",
        "modes": AGGRESSIVE_ONLY,
        "value": "1",
        "description": "SYN cookies on SYN queue overflow",
    },

    # =========================================================================
    # PORTS & UDP
    # =========================================================================
    "net.ipv4.ip_local_port_range": {
        "section": "ports_udp",
        "modes": BOTH,
        "value": "1024 65535",
        "description": "Ephemeral port range",
    },
    "net.ipv4.udp_rmem_min": {
        "section": "ports_udp",
        "modes": BOTH,
        "derived": ("udp_read_min",),
        "description": "Minimum UDP receive buffer",
    },
    "net.ipv4.udp_wmem_min": {
        "section": "ports_udp",
        "modes": BOTH,
        "derived": ("udp_write_min",),
        "description": "Minimum UDP send buffer",
    },

    # =========================================================================
    # IPV6
    # =========================================================================
    "net.ipv6.conf.all.disable_ipv6": {
        "section": "ipv6",
        "modes": AGGRESSIVE_ONLY,
        "value": "0",
        "description": "Keep IPv6 enabled on all interfaces",
    },
    "net.ipv6.conf.default.disable_ipv6": {
        "section": "ipv6",
        "modes": AGGRESSIVE_ONLY,
        "value": "0",
        "description": "Keep IPv6 enabled on new interfaces",
    },
}


def normalize_key(key: str) -> str:
    """Return the dotted form of a sysctl key, accepting slash notation"""
    key = key.strip()
    if '/' in key:
        # sysctl.d(5): with '/' as separator, '.' and '/' swap meaning
        key = key.translate(str.maketrans('/.', './'))
    return key


def tracked_keys(aggressiveness: Aggressiveness, congestion_control: bool = True) -> List[str]:
    """
    Keys the artifact assigns for the given mode.

    Args:
        aggressiveness: Conservative or Aggressive
        congestion_control: False when the running kernel cannot use BBR; the
            qdisc and congestion-control keys are then left alone entirely.

    Returns:
        Keys in canonical order
    """
    keys = []
    for key, meta in KEY_REGISTRY.items():
        if aggressiveness not in meta["modes"]:
            continue
        if meta.get("congestion_control") and not congestion_control:
            continue
        keys.append(key)
    return keys


def keys_by_section(aggressiveness: Aggressiveness, congestion_control: bool = True) -> Dict[str, List[str]]:
    grouped = {name: [] for name, _ in SECTIONS}
    for key in tracked_keys(aggressiveness, congestion_control):
        grouped[KEY_REGISTRY[key]["section"]].append(key)
    return grouped
