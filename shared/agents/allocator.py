#!/usr/bin/env python3
"""
Greedy capacity allocator.

Packs a required thread count for one (kind, target) pair onto runners in
directory order. The capacity map passed in is the allocator's bookkeeping
for the current stage; it is decremented as threads are placed and runners
drop out once they cannot fit another thread. Whatever does not fit is
returned as unmet and left for the next cycle.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from cluster import Cluster
from inventory import CapacityMap
from jobs import JobKind, script_for

logger = logging.getLogger("harvester.allocator")


@dataclass
class JobAssignment:
    kind: JobKind
    host: str
    threads: int
    target: Optional[str] = None


@dataclass
class AllocationResult:
    kind: JobKind
    target: Optional[str]
    required: int
    placed: int = 0
    assignments: List[JobAssignment] = field(default_factory=list)

    @property
    def unmet(self) -> int:
        return max(0, self.required - self.placed)


def _consume(capacity: CapacityMap, host: str, used: float, unit_cost: float):
    leftover = capacity[host] - used
    if leftover < unit_cost:
        del capacity[host]
    else:
        capacity[host] = leftover


def allocate(cluster: Cluster, capacity: CapacityMap, kind: JobKind, required: int,
             target: str, unit_cost: float) -> AllocationResult:
    """Place up to `required` threads of `kind` against `target`.

    Never puts more than floor(free / unit_cost) threads on a runner and never
    more than `required` in total. A rejected dispatch places nothing on that
    runner and is not retried this cycle.
    """
    result = AllocationResult(kind=kind, target=target, required=max(0, required))
    if result.required == 0 or unit_cost <= 0:
        return result

    script = script_for(kind)
    remaining = result.required

    for host in list(capacity):
        if remaining <= 0:
            break
        threads = min(math.floor(capacity[host] / unit_cost), remaining)
        if threads <= 0:
            del capacity[host]
            continue

        pid = cluster.dispatch(script, host, threads, [target])
        if pid <= 0:
            logger.debug(f"{script} x{threads} on {host} for {target} rejected")
            continue

        remaining -= threads
        result.placed += threads
        result.assignments.append(JobAssignment(kind, host, threads, target))
        _consume(capacity, host, threads * unit_cost, unit_cost)

    return result


def allocate_filler(cluster: Cluster, capacity: CapacityMap, unit_cost: float) -> AllocationResult:
    """Hand every leftover slot to filler jobs. No sizing, no target."""
    result = AllocationResult(kind=JobKind.FILLER, target=None, required=0)
    if unit_cost <= 0:
        return result

    script = script_for(JobKind.FILLER)
    for host in list(capacity):
        threads = math.floor(capacity[host] / unit_cost)
        if threads <= 0:
            del capacity[host]
            continue
        pid = cluster.dispatch(script, host, threads)
        if pid <= 0:
            continue
        result.placed += threads
        result.assignments.append(JobAssignment(JobKind.FILLER, host, threads))
        _consume(capacity, host, threads * unit_cost, unit_cost)

    result.required = result.placed
    return result
