#!/usr/bin/env python3
"""
Cycle info snapshot published for other tools on the shared path.

The harvester rewrites <shared_path>/harvest/cycle_info.json at the end of
every cycle. Readers (capacity purchasers, dashboards) treat a snapshot older
than STALE_AFTER_SECONDS as absent.

Usage:
    from cycle_info import read_cycle_info, is_capacity_saturated
    info = read_cycle_info(shared_path / "harvest" / "cycle_info.json")
    if info and is_capacity_saturated(info):
        ...
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from filelock import FileLock, Timeout

from jobs import JobKind

INFO_FILENAME = "cycle_info.json"
STALE_AFTER_SECONDS = 120
SATURATION_FILLER_SHARE = 0.3
WORK_KINDS = (JobKind.EXTRACT, JobKind.REPLENISH, JobKind.SUPPRESS)


def build_cycle_info(result, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Summarize a CycleResult into the published JSON shape."""
    filler_threads = result.dispatched.get(JobKind.FILLER, 0)
    work_threads = sum(
        result.running.get(kind, 0) + result.dispatched.get(kind, 0) for kind in WORK_KINDS
    )
    placements: Dict[str, Dict[str, int]] = {}
    for assignment in result.assignments:
        if assignment.target is None:
            continue
        per_kind = placements.setdefault(assignment.target, {})
        per_kind[assignment.kind.value] = per_kind.get(assignment.kind.value, 0) + assignment.threads

    decision = result.decision
    return {
        "timestamp": (now or datetime.now()).isoformat(timespec="seconds"),
        "mode": decision.mode.value if decision else None,
        "locked": decision.locked if decision else False,
        "reason": decision.reason if decision else (result.waiting or "no decision"),
        "running": {kind.value: result.running.get(kind, 0) for kind in JobKind},
        "dispatched": {kind.value: result.dispatched.get(kind, 0) for kind in JobKind},
        "unmet": {kind.value: result.unmet.get(kind, 0) for kind in WORK_KINDS},
        "filler_released": result.filler_released,
        "filler_threads": filler_threads,
        "total_threads": work_threads + filler_threads,
        "saturated": filler_threads > 0 and work_threads > 0,
        "runners": result.runner_count,
        "targets": len(result.targets),
        "placements": placements,
    }


def write_cycle_info(path: Path, info: Dict[str, Any]):
    """Atomically replace the snapshot. Skips the write if a reader holds the lock."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(path) + ".lock", timeout=1)
    try:
        with lock:
            tmp = path.with_suffix(".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(info, f, indent=2)
            os.replace(tmp, path)
    except Timeout:
        return False
    return True


def read_cycle_info(path: Path, max_age_seconds: float = STALE_AFTER_SECONDS,
                    now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Load the snapshot, or None if it is missing, unreadable or stale."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with FileLock(str(path) + ".lock", timeout=1):
            info = json.loads(path.read_text())
        stamp = datetime.fromisoformat(str(info["timestamp"]))
    except (Timeout, OSError, ValueError, KeyError, TypeError):
        return None

    age = ((now or datetime.now()) - stamp).total_seconds()
    if age > max_age_seconds:
        return None
    return info


def is_capacity_saturated(info: Optional[Dict[str, Any]]) -> bool:
    """True when adding capacity would mostly feed filler jobs."""
    if not info:
        return False
    total = info.get("total_threads", 0)
    return bool(info.get("saturated")) and info.get("filler_threads", 0) > total * SATURATION_FILLER_SHARE
