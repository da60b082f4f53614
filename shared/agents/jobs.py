#!/usr/bin/env python3
"""
Job kinds dispatched onto runner nodes.

Every kind maps to exactly one job script. Extract, Replenish and Suppress
jobs take the target host as their first argument and are tracked by the
in-flight inventory. Filler jobs take no target and only soak up idle capacity.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class JobKind(Enum):
    EXTRACT = "extract"
    REPLENISH = "replenish"
    SUPPRESS = "suppress"
    FILLER = "filler"


@dataclass(frozen=True)
class JobSpec:
    kind: JobKind
    script: str
    tracked: bool  # counted per target by the in-flight inventory


JOB_SPECS: Dict[JobKind, JobSpec] = {
    JobKind.EXTRACT: JobSpec(JobKind.EXTRACT, "extract.py", tracked=True),
    JobKind.REPLENISH: JobSpec(JobKind.REPLENISH, "replenish.py", tracked=True),
    JobKind.SUPPRESS: JobSpec(JobKind.SUPPRESS, "suppress.py", tracked=True),
    JobKind.FILLER: JobSpec(JobKind.FILLER, "filler.py", tracked=False),
}

# Per-thread security deltas
SECURITY_PER_SUPPRESS = 0.05
SECURITY_PER_EXTRACT = 0.002
SECURITY_PER_REPLENISH = 0.004


def script_for(kind: JobKind) -> str:
    return JOB_SPECS[kind].script


def kind_for_script(script: str) -> Optional[JobKind]:
    """Map a running job's script name back to its kind (None if foreign)."""
    name = script.rsplit("/", 1)[-1]
    for spec in JOB_SPECS.values():
        if spec.script == name:
            return spec.kind
    return None


def all_scripts() -> List[str]:
    return [spec.script for spec in JOB_SPECS.values()]
