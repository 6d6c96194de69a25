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

import argparse
import logging
import os
import sys
from typing import Callable, Dict, List, Optional

from reconnaissance import host
from reconnaissance.rtt_probe import probe_rtt, resolve_probe_target
from sysctl_tuning import preflight
from sysctl_tuning.calculator import MIB
from sysctl_tuning.config import DEFAULT_BANDWIDTH_MBPS, PROGRAM, VERSION, load_config
from sysctl_tuning.models import Aggressiveness
from sysctl_tuning.orchestrator import TuningOrchestrator

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
RULE = "-" * 50

PROMPTS = {
    '1': ('memory_gib', "Enter new memory size (GiB)"),
    '2': ('bandwidth_mbps', "Enter bandwidth (Mbps)"),
    '3': ('rtt_ms', "Enter RTT latency (ms)"),
}

REPORT_KEYS = [
    ("TCP Congestion Control", "net.ipv4.tcp_congestion_control"),
    ("Default Qdisc", "net.core.default_qdisc"),
    ("Max Recv Buffer", "net.core.rmem_max"),
    ("Max Send Buffer", "net.core.wmem_max"),
    ("TCP rmem (min/def/max)", "net.ipv4.tcp_rmem"),
    ("TCP wmem (min/def/max)", "net.ipv4.tcp_wmem"),
    ("UDP rmem_min", "net.ipv4.udp_rmem_min"),
    ("UDP wmem_min", "net.ipv4.udp_wmem_min"),
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description='BDP-based TCP/UDP buffer tuning with BBR and fq',
        epilog=(f"examples:\n"
                f"  {PROGRAM}                  interactive mode\n"
                f"  {PROGRAM} -b 500 -r 50 -y  non-interactive mode\n"
                f"  {PROGRAM} --dry-run        preview changes\n"
                f"  {PROGRAM} --uninstall      remove the tuning artifact"),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-m', '--mem', help='memory size in GiB (default: auto-detect)')
    parser.add_argument('-b', '--bw', default=str(DEFAULT_BANDWIDTH_MBPS), help='bandwidth in Mbps (default: %(default)s)')
    parser.add_argument('-r', '--rtt', help='RTT latency in ms (default: auto-detect)')
    parser.add_argument('--mode', choices=[m.value for m in Aggressiveness], default=Aggressiveness.CONSERVATIVE.value,
                        help='sizing strategy (default: %(default)s)')
    parser.add_argument('-y', '--yes', action='store_true', help='skip confirmation, apply directly')
    parser.add_argument('--uninstall', action='store_true', help='remove the tuning artifact and re-apply')
    parser.add_argument('--dry-run', '--preview', dest='preview', action='store_true',
                        help='show what would be done without making changes')
    parser.add_argument('-d', '--debug', action='store_true', help='enable debug logging')
    parser.add_argument('-V', '--version', action='version', version=f"{PROGRAM} v{VERSION}")
    parser.add_argument('--probe-target', help='host to ping for RTT detection')
    parser.add_argument('--interface', help='interface for the fq qdisc (default: default route)')
    parser.add_argument('--target', help='canonical artifact path')
    return parser


def configure_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def detect_rtt(config: Dict, explicit: Optional[str], interactive: bool,
               input_fn: Callable[[str], str] = input) -> int:
    if explicit is None and interactive and not os.environ.get("SSH_CONNECTION"):
        try:
            explicit = input_fn(f"Enter client IP for ping test (press Enter for {config['probe_target']}): ").strip() or None
        except EOFError:
            explicit = None

    target, description = resolve_probe_target(explicit, default=config['probe_target'])
    logger.info(f"Detecting RTT via ping to {description}...")
    return probe_rtt(target, fallback_ms=config['fallback_rtt_ms'])


def confirm_inputs(values: Dict[str, str],
                   input_fn: Callable[[str], str] = input,
                   output: Callable[[str], None] = print) -> Optional[Dict[str, str]]:
    """
    Interactive confirmation loop.

    Enter confirms, 1-3 edit a value, q quits. End of input counts as quit.

    Returns:
        The confirmed values, or None when the user quit
    """
    values = dict(values)
    while True:
        output(RULE)
        output(f"1. Memory      : {values['memory_gib']} GiB")
        output(f"2. Bandwidth   : {values['bandwidth_mbps']} Mbps")
        output(f"3. RTT Latency : {values['rtt_ms']} ms")
        output(RULE)
        try:
            choice = input_fn("Press [Enter] to apply, [1-3] to modify, [q] to quit: ").strip()
        except EOFError:
            return None

        if choice == '':
            logger.info("Parameters confirmed, starting optimization...")
            return values
        if choice.lower() == 'q':
            logger.info("User cancelled.")
            return None
        if choice in PROMPTS:
            field, prompt = PROMPTS[choice]
            try:
                new_value = input_fn(f"{prompt} [{values[field]}]: ").strip()
            except EOFError:
                return None
            if new_value:
                values[field] = new_value
            continue
        logger.warning("Invalid input, please try again.")


def format_report(summary: Dict) -> List[str]:
    budget = summary['budget']
    inputs = summary['inputs']
    effective = summary.get('effective', {})

    lines = [
        "[+] I. Input Parameters",
        f"    - {'Memory':<12} : {inputs.memory_gib} GiB",
        f"    - {'Bandwidth':<12} : {inputs.bandwidth_mbps} Mbps",
        f"    - {'RTT':<12} : {inputs.rtt_ms} ms",
        f"    - {'BDP':<12} : {budget.bdp_bytes / MIB:.2f} MB",
        f"    - {'Buffer Max':<12} : {budget.buffer_max_mb} MB",
        "",
        "[+] II. Dynamic Parameters",
        f"    - {'mode':<25} : {budget.aggressiveness.value} ({budget.tier})",
        f"    - {'somaxconn':<25} : {budget.queue_backlog_size}",
        f"    - {'tcp_max_syn_backlog':<25} : {budget.syn_backlog_size}",
        f"    - {'netdev_max_backlog':<25} : {budget.netdev_backlog_size}",
    ]
    if effective:
        lines += ["", "[+] III. Kernel Verification"]
        for label, key in REPORT_KEYS:
            lines.append(f"    - {label:<25} : {effective.get(key, 'unknown')}")
        if summary.get('interface'):
            lines.append(f"    - {'Qdisc (' + summary['interface'] + ')':<25} : {summary.get('qdisc', 'unknown')}")
    if summary['warnings']:
        lines += ["", "[!] Warnings"]
        lines += [f"    - {warning}" for warning in summary['warnings']]
    return lines


def main(argv: Optional[List[str]] = None,
         input_fn: Callable[[str], str] = input,
         orchestrator_factory: Callable[[Dict], TuningOrchestrator] = TuningOrchestrator) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(args.debug or config['debug'])

    if args.target:
        config['target_path'] = args.target
    if args.interface:
        config['interface'] = args.interface

    orchestrator = orchestrator_factory(config)

    if args.uninstall:
        summary = orchestrator.uninstall()
        for error in summary['errors']:
            print(f"[!!] {error}", file=sys.stderr)
        return summary['exit_code']

    interactive = not args.yes and not args.preview
    values = {
        'memory_gib': args.mem if args.mem is not None else str(host.detect_memory_gib()),
        'bandwidth_mbps': args.bw,
        'rtt_ms': args.rtt if args.rtt is not None else str(detect_rtt(config, args.probe_target, interactive, input_fn)),
    }

    if interactive:
        values = confirm_inputs(values, input_fn=input_fn)
        if values is None:
            return 0

    result = preflight.main(aggressiveness=args.mode, **values)
    if result['result'] != 'SUCCESS':
        print(result['error'], file=sys.stderr)
        return 1
    inputs = result['data']['inputs']

    summary = orchestrator.run(inputs, preview=args.preview)
    summary['inputs'] = inputs

    if summary['status'] != 'completed':
        for error in summary['errors']:
            print(f"[!!] {error}", file=sys.stderr)
        return summary['exit_code']

    if args.preview:
        print(summary['document'].text(), end='')
        return 0

    print("\n".join(format_report(summary)))
    return summary['exit_code']


if __name__ == '__main__':
    sys.exit(main())
