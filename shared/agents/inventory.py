#!/usr/bin/env python3
"""
Capacity probing and in-flight job inventory.

Both are rebuilt from live process listings every cycle. The harvester keeps
no ledger of what it dispatched earlier; whatever is still running on the
runners is the only record of past decisions.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

from cluster import Cluster, RunningJob
from jobs import JobKind, JOB_SPECS, kind_for_script, script_for

logger = logging.getLogger("harvester.inventory")

# host -> free capacity, in directory order
CapacityMap = Dict[str, float]


@dataclass
class InFlightThreads:
    extract: int = 0
    replenish: int = 0
    suppress: int = 0

    def add(self, kind: JobKind, threads: int):
        if kind == JobKind.EXTRACT:
            self.extract += threads
        elif kind == JobKind.REPLENISH:
            self.replenish += threads
        elif kind == JobKind.SUPPRESS:
            self.suppress += threads


def probe_free_capacity(cluster: Cluster, host: str) -> float:
    node = cluster.node(host)
    return node.free_capacity


def probe_capacity_map(cluster: Cluster, runners: List[str]) -> CapacityMap:
    """Free capacity per runner. Runners with nothing free are left out."""
    capacity: CapacityMap = {}
    for host in runners:
        free = probe_free_capacity(cluster, host)
        if free > 0:
            capacity[host] = free
    return capacity


def list_running_jobs(cluster: Cluster, runners: List[str]) -> Dict[str, List[RunningJob]]:
    return {host: cluster.list_jobs(host) for host in runners}


def build_inflight_inventory(running: Dict[str, List[RunningJob]]) -> Dict[str, InFlightThreads]:
    """Aggregate tracked job threads per target across all runners."""
    inventory: Dict[str, InFlightThreads] = {}
    for jobs in running.values():
        for job in jobs:
            kind = kind_for_script(job.script)
            if kind is None or not JOB_SPECS[kind].tracked:
                continue
            target = job.target
            if not target:
                continue
            inventory.setdefault(target, InFlightThreads()).add(kind, job.threads)
    return inventory


def summarize_running(running: Dict[str, List[RunningJob]]) -> Dict[JobKind, int]:
    """Fleet-wide running threads by kind, straight from the process listing."""
    summary = {kind: 0 for kind in JobKind}
    for jobs in running.values():
        for job in jobs:
            kind = kind_for_script(job.script)
            if kind is not None:
                summary[kind] += job.threads
    return summary


def terminate_filler_jobs(cluster: Cluster, runners: List[str]) -> int:
    """Kill every filler job on the runners. Returns threads released."""
    filler = script_for(JobKind.FILLER)
    released = 0
    for host in runners:
        for job in cluster.list_jobs(host):
            if kind_for_script(job.script) != JobKind.FILLER:
                continue
            if cluster.terminate(host, job.pid):
                released += job.threads
            else:
                logger.debug(f"Could not terminate {filler} pid {job.pid} on {host}")
    return released
