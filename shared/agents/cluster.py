#!/usr/bin/env python3
"""
Cluster access layer - everything the harvester needs from the outside world.

The scheduler never talks to nodes directly. Topology, privilege, process
control and target telemetry all go through a Cluster implementation:

  - HttpCluster:      JSON control API of a live fleet (requests)
  - SimulatedCluster: in-memory fleet loaded from a topology dict/file.
                      Dispatch consumes capacity, terminate frees it.
                      Used for dry runs (--simulate) and tests.

Usage:
    from cluster import HttpCluster, SimulatedCluster
    cluster = SimulatedCluster.from_file("topology.json")
"""

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests

logger = logging.getLogger("harvester.cluster")


class HarvestError(Exception):
    """Base error for the harvester."""


class ClusterError(HarvestError):
    """A cluster collaborator call failed."""


# =============================================================================
# Records
# =============================================================================

@dataclass
class Node:
    host: str
    max_capacity: float = 0.0
    used_capacity: float = 0.0
    max_resource: float = 0.0
    has_root: bool = False
    donor: bool = False  # operator-owned capacity node, never a target

    @property
    def free_capacity(self) -> float:
        return max(0.0, self.max_capacity - self.used_capacity)


@dataclass
class RunningJob:
    script: str
    args: List[Any]
    threads: int
    pid: int = 0

    @property
    def target(self) -> Optional[str]:
        if not self.args:
            return None
        return str(self.args[0]) or None


@dataclass
class TargetSnapshot:
    """Live telemetry for one target node."""
    host: str
    max_resource: float
    resource: float
    min_security: float
    security: float
    success_chance: float = 1.0
    required_skill: int = 1
    controller_skill: int = 1
    growth_factor: float = 50.0
    has_root: bool = False

    @property
    def skill_gate(self) -> bool:
        return self.controller_skill >= self.required_skill

    def with_resource(self, resource: float) -> "TargetSnapshot":
        return replace(self, resource=resource)


# =============================================================================
# Interface
# =============================================================================

class Cluster(ABC):
    """Contract for the external collaborators the scheduler relies on."""

    @abstractmethod
    def neighbors(self, host: str) -> List[str]: ...

    @abstractmethod
    def node(self, host: str) -> Node: ...

    @abstractmethod
    def try_escalate(self, host: str) -> bool: ...

    @abstractmethod
    def list_jobs(self, host: str) -> List[RunningJob]: ...

    @abstractmethod
    def dispatch(self, script: str, host: str, threads: int, args: Iterable[Any] = ()) -> int:
        """Launch a job. Returns its pid, or 0 if the node rejected it."""

    @abstractmethod
    def terminate(self, host: str, pid: int) -> bool: ...

    @abstractmethod
    def deploy(self, scripts: List[str], host: str) -> bool: ...

    @abstractmethod
    def script_cost(self, script: str) -> float: ...

    @abstractmethod
    def target_snapshot(self, host: str) -> TargetSnapshot: ...

    @abstractmethod
    def extract_yield_estimate(self, host: str) -> float:
        """Fraction of current resource one extract thread removes."""

    @abstractmethod
    def growth_threads_estimate(self, host: str, multiplier: float) -> float:
        """Replenish threads needed to multiply current resource by `multiplier`."""

    def supports_analytic_model(self) -> bool:
        return False


# =============================================================================
# HTTP control API
# =============================================================================

class HttpCluster(Cluster):
    """Fleet control API client.

    Rejected dispatches come back as 409 (no capacity) or 507 (insufficient
    storage on the runner) and are reported as pid 0, not as errors.
    """

    REJECTED_STATUS = (409, 507)

    def __init__(self, api_url: str, timeout: float = 5, analytic_model: bool = False,
                 session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.analytic_model = analytic_model
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ClusterError(f"{method} {path} failed: {e}") from e
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise ClusterError(f"{method} {path} failed: {e}") from e
        return response.json()

    def neighbors(self, host: str) -> List[str]:
        return list(self._json("GET", f"/nodes/{host}/neighbors").get("neighbors", []))

    def node(self, host: str) -> Node:
        data = self._json("GET", f"/nodes/{host}")
        return Node(
            host=host,
            max_capacity=float(data.get("max_capacity", 0)),
            used_capacity=float(data.get("used_capacity", 0)),
            max_resource=float(data.get("max_resource", 0)),
            has_root=bool(data.get("has_root", False)),
            donor=bool(data.get("donor", False)),
        )

    def try_escalate(self, host: str) -> bool:
        return bool(self._json("POST", f"/nodes/{host}/escalate").get("has_root", False))

    def list_jobs(self, host: str) -> List[RunningJob]:
        jobs = []
        for row in self._json("GET", f"/nodes/{host}/jobs").get("jobs", []):
            jobs.append(RunningJob(
                script=row.get("script", ""),
                args=list(row.get("args", [])),
                threads=int(row.get("threads", 0)),
                pid=int(row.get("pid", 0)),
            ))
        return jobs

    def dispatch(self, script: str, host: str, threads: int, args: Iterable[Any] = ()) -> int:
        response = self._request(
            "POST", f"/nodes/{host}/jobs",
            json={"script": script, "threads": threads, "args": list(args)},
        )
        if response.status_code in self.REJECTED_STATUS:
            logger.debug(f"Dispatch of {script} x{threads} on {host} rejected: {response.text[:200]}")
            return 0
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise ClusterError(f"dispatch {script} on {host} failed: {e}") from e
        return int(response.json().get("pid", 0))

    def terminate(self, host: str, pid: int) -> bool:
        response = self._request("DELETE", f"/nodes/{host}/jobs/{pid}")
        return response.ok

    def deploy(self, scripts: List[str], host: str) -> bool:
        return bool(self._json("POST", f"/nodes/{host}/scripts", json={"scripts": scripts}).get("ok", False))

    def script_cost(self, script: str) -> float:
        return float(self._json("GET", f"/scripts/{script}").get("cost", 0))

    def target_snapshot(self, host: str) -> TargetSnapshot:
        data = self._json("GET", f"/targets/{host}")
        return TargetSnapshot(
            host=host,
            max_resource=float(data.get("max_resource", 0)),
            resource=float(data.get("resource", 0)),
            min_security=float(data.get("min_security", 0)),
            security=float(data.get("security", 0)),
            success_chance=float(data.get("success_chance", 0)),
            required_skill=int(data.get("required_skill", 1)),
            controller_skill=int(data.get("controller_skill", 1)),
            growth_factor=float(data.get("growth_factor", 0)),
            has_root=bool(data.get("has_root", False)),
        )

    def extract_yield_estimate(self, host: str) -> float:
        return float(self._json("GET", f"/targets/{host}/estimates/yield").get("per_thread", 0))

    def growth_threads_estimate(self, host: str, multiplier: float) -> float:
        data = self._json("GET", f"/targets/{host}/estimates/growth", params={"multiplier": multiplier})
        return float(data.get("threads", 0))

    def supports_analytic_model(self) -> bool:
        return self.analytic_model


# =============================================================================
# Simulated fleet
# =============================================================================

@dataclass
class _SimNode:
    host: str
    neighbors: List[str] = field(default_factory=list)
    max_capacity: float = 0.0
    max_resource: float = 0.0
    resource: float = 0.0
    min_security: float = 1.0
    security: float = 1.0
    success_chance: float = 1.0
    required_skill: int = 1
    growth_factor: float = 50.0
    growth_rate: float = 1.01     # resource multiplier per replenish thread
    extract_yield: float = 0.01   # resource fraction per extract thread
    has_root: bool = False
    escalatable: bool = True
    donor: bool = False


class SimulatedCluster(Cluster):
    """In-memory fleet. Jobs never finish on their own; tests drive state."""

    def __init__(self, nodes: Dict[str, Dict[str, Any]], script_costs: Optional[Dict[str, float]] = None,
                 controller_skill: int = 1, analytic_model: bool = False):
        self.nodes: Dict[str, _SimNode] = {
            host: _SimNode(host=host, **spec) for host, spec in nodes.items()
        }
        # Adjacency is symmetric
        for host, sim in self.nodes.items():
            for other in sim.neighbors:
                peer = self.nodes.get(other)
                if peer is not None and host not in peer.neighbors:
                    peer.neighbors.append(host)
        self.script_costs: Dict[str, float] = dict(script_costs or {})
        self.controller_skill = controller_skill
        self.analytic_model = analytic_model
        self.jobs: Dict[str, List[RunningJob]] = {host: [] for host in self.nodes}
        self.deployed: Dict[str, set] = {host: set() for host in self.nodes}
        self.rejected_hosts: set = set()  # dispatch on these always fails
        self._next_pid = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulatedCluster":
        return cls(
            nodes=data.get("nodes", {}),
            script_costs=data.get("script_costs"),
            controller_skill=int(data.get("controller_skill", 1)),
            analytic_model=bool(data.get("analytic_model", False)),
        )

    @classmethod
    def from_file(cls, path: str) -> "SimulatedCluster":
        with open(Path(path)) as f:
            return cls.from_dict(json.load(f))

    def _get(self, host: str) -> _SimNode:
        try:
            return self.nodes[host]
        except KeyError:
            raise ClusterError(f"unknown host: {host}") from None

    def used_capacity(self, host: str) -> float:
        return sum(job.threads * self.script_cost(job.script) for job in self.jobs.get(host, []))

    # --- Cluster interface ---------------------------------------------------

    def neighbors(self, host: str) -> List[str]:
        return list(self._get(host).neighbors)

    def node(self, host: str) -> Node:
        sim = self._get(host)
        return Node(
            host=host,
            max_capacity=sim.max_capacity,
            used_capacity=self.used_capacity(host),
            max_resource=sim.max_resource,
            has_root=sim.has_root,
            donor=sim.donor,
        )

    def try_escalate(self, host: str) -> bool:
        sim = self._get(host)
        if sim.has_root:
            return True
        if sim.escalatable and self.controller_skill >= sim.required_skill:
            sim.has_root = True
        return sim.has_root

    def list_jobs(self, host: str) -> List[RunningJob]:
        return list(self.jobs.get(host, []))

    def dispatch(self, script: str, host: str, threads: int, args: Iterable[Any] = ()) -> int:
        sim = self._get(host)
        if threads <= 0 or not sim.has_root or host in self.rejected_hosts:
            return 0
        needed = threads * self.script_cost(script)
        if needed > sim.max_capacity - self.used_capacity(host) + 1e-9:
            return 0
        pid = self._next_pid
        self._next_pid += 1
        self.jobs[host].append(RunningJob(script=script, args=list(args), threads=threads, pid=pid))
        return pid

    def terminate(self, host: str, pid: int) -> bool:
        before = len(self.jobs.get(host, []))
        self.jobs[host] = [job for job in self.jobs.get(host, []) if job.pid != pid]
        return len(self.jobs[host]) < before

    def deploy(self, scripts: List[str], host: str) -> bool:
        self._get(host)
        self.deployed[host].update(scripts)
        return True

    def script_cost(self, script: str) -> float:
        return float(self.script_costs.get(script, 0.0))

    def target_snapshot(self, host: str) -> TargetSnapshot:
        sim = self._get(host)
        return TargetSnapshot(
            host=host,
            max_resource=sim.max_resource,
            resource=sim.resource,
            min_security=sim.min_security,
            security=sim.security,
            success_chance=sim.success_chance,
            required_skill=sim.required_skill,
            controller_skill=self.controller_skill,
            growth_factor=sim.growth_factor,
            has_root=sim.has_root,
        )

    def extract_yield_estimate(self, host: str) -> float:
        return self._get(host).extract_yield

    def growth_threads_estimate(self, host: str, multiplier: float) -> float:
        rate = self._get(host).growth_rate
        if multiplier <= 1 or rate <= 1:
            return 0.0
        return math.log(multiplier) / math.log(rate)

    def supports_analytic_model(self) -> bool:
        return self.analytic_model
