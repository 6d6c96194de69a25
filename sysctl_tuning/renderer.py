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
Config Document Renderer.

Turns a DerivedBudget into the ordered ``key = value`` document written to
the canonical sysctl.d artifact. Output depends only on its arguments; the
generation time is confined to one comment line.
"""

from datetime import datetime
from typing import Optional

from sysctl_tuning.calculator import MIB
from sysctl_tuning.config import PROGRAM, VERSION
from sysctl_tuning.key_registry import KEY_REGISTRY, SECTIONS, keys_by_section
from sysctl_tuning.models import DerivedBudget, RenderedDocument, TuningInputs

RULE = "# " + "=" * 77
SECTION_RULE = "# " + "-" * 77


def render_value(key: str, budget: DerivedBudget) -> str:
    meta = KEY_REGISTRY[key]
    if "derived" in meta:
        return " ".join(str(getattr(budget, attribute)) for attribute in meta["derived"])
    return meta["value"]


def render(budget: DerivedBudget,
           inputs: TuningInputs,
           congestion_control_supported: bool = True,
           generated_at: Optional[datetime] = None) -> RenderedDocument:
    """
    Render the artifact for a budget.

    Args:
        budget: Calculator output
        inputs: The inputs the budget was computed from, for provenance
        congestion_control_supported: When False the qdisc/congestion keys are
            replaced by an explanatory comment
        generated_at: Timestamp for the single timestamp line

    Returns:
        RenderedDocument in canonical key order
    """
    generated_at = generated_at or datetime.now()
    mode = budget.aggressiveness.value

    lines = [
        RULE,
        f"# Auto-generated by {PROGRAM} v{VERSION} - {mode.upper()} mode",
    ]
    timestamp_index = len(lines)
    lines.append(f"# Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
    lines += [
        RULE,
        f"# Inputs: memory={inputs.memory_gib}GiB, bandwidth={inputs.bandwidth_mbps}Mbps, rtt={inputs.rtt_ms}ms",
        f"# BDP: {budget.bdp_bytes} bytes (~{budget.bdp_bytes / MIB:.2f} MiB)",
        f"# Strategy: {budget.strategy}",
    ]

    entries = []
    grouped = keys_by_section(budget.aggressiveness, congestion_control=congestion_control_supported)
    for section, title in SECTIONS:
        keys = grouped[section]
        skipped_congestion = section == "congestion" and not congestion_control_supported
        if not keys and not skipped_congestion:
            continue

        lines += ["", SECTION_RULE, f"# {title}", SECTION_RULE]
        if skipped_congestion:
            lines.append("# BBR not supported by the running kernel, congestion control left unchanged")
            continue

        for key in keys:
            value = render_value(key, budget)
            entries.append((key, value))
            lines.append(f"{key} = {value}")

    return RenderedDocument(lines=tuple(lines), entries=tuple(entries), timestamp_index=timestamp_index)
