#!/usr/bin/env python3
"""Per-cycle status report (plain text, refreshed every cycle)."""

from typing import Dict, List, Optional, Tuple

from activity import ActivityLog
from jobs import JobKind

RULE = "═" * 39
DEFAULT_TOP_TARGETS = 8


def _kinds(counts, kinds) -> str:
    return " ".join(f"{kind.value}:{counts.get(kind, 0)}" for kind in kinds)


def _placements(assignments) -> List[str]:
    """One line per (target, kind), threads summed across runners."""
    grouped: Dict[Tuple[Optional[str], JobKind], List] = {}
    for assignment in assignments:
        entry = grouped.setdefault((assignment.target, assignment.kind), [0, set()])
        entry[0] += assignment.threads
        entry[1].add(assignment.host)

    lines = []
    for (target, kind), (threads, hosts) in grouped.items():
        label = target if target is not None else "idle capacity"
        lines.append(f"  {label}: {kind.value} {threads}t on {len(hosts)} runner(s)")
    return lines


def render_status(result, activity: ActivityLog, top: int = DEFAULT_TOP_TARGETS) -> str:
    """Render a CycleResult plus the recent activity log."""
    lines: List[str] = [RULE, "          RESOURCE HARVESTER", RULE]

    decision = result.decision
    if decision is None:
        lines.append("Mode: (none) - no decision this cycle")
    else:
        lock = " [locked]" if decision.locked else ""
        lines.append(f"Mode: {decision.mode.value.upper()} ({decision.reason}){lock}")

    lines.append(f"Running -> {_kinds(result.running, JobKind)}")
    main = sum(result.dispatched.get(kind, 0) for kind in (JobKind.EXTRACT, JobKind.REPLENISH))
    lines.append(
        f"New -> main:{main} suppress:{result.dispatched.get(JobKind.SUPPRESS, 0)} "
        f"filler:{result.dispatched.get(JobKind.FILLER, 0)}"
    )
    if result.filler_released:
        lines.append(f"Filler released: {result.filler_released} threads")
    unmet_kinds = (JobKind.EXTRACT, JobKind.REPLENISH, JobKind.SUPPRESS)
    if any(result.unmet.get(kind, 0) for kind in unmet_kinds):
        lines.append(f"Unmet -> {_kinds(result.unmet, unmet_kinds)}")
    lines.append(f"Runners: {result.runner_count} | free capacity at start: {result.free_capacity:.1f}")
    if result.waiting:
        lines.append(f"Waiting: {result.waiting}")
    lines.append("")

    lines.append("Placed this cycle")
    placed = _placements(result.assignments)
    if not placed:
        lines.append("  (nothing placed)")
    lines.extend(placed)
    lines.append("")

    lines.append("Top targets")
    if not result.targets:
        lines.append("  (no schedulable targets)")
    for state in result.targets[:top]:
        pct = state.predicted_fraction * 100
        lines.append(
            f"{state.host}: {pct:.0f}% resource | +{state.security_delta:.2f} sec | score:{state.score:.3g}"
        )

    lines.append("")
    lines.append("Recent activity")
    entries = activity.entries()
    if not entries:
        lines.append("  (no activity yet)")
    for entry in entries:
        lines.append(f"  {entry}")

    return "\n".join(lines)
