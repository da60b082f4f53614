#!/usr/bin/env python3
"""
Harvester - the scheduling loop.

Every cycle the harvester rediscovers the fleet, predicts where each target
will land once in-flight jobs complete, picks one fleet-wide mode (Extract or
Replenish), sizes the work per target and packs it onto free runner capacity.
Leftover capacity goes to filler jobs, which are killed and redispatched every
cycle.

Cycle:
  1. Discover topology (BFS from the root node)
  2. Escalate privilege on reachable nodes
  3. Deploy job scripts to runners, terminate last cycle's filler jobs
  4. Build in-flight inventory from live process listings
  5. Predict + rank targets, decide mode
  6. Size and allocate main-kind threads, then suppress threads
  7. Hand leftover capacity to filler jobs
  8. Publish cycle info + status report, sleep, repeat

Nothing about past allocations is persisted; the next cycle re-reads the
fleet and corrects whatever the last one got wrong.

Usage:
  python harvester.py
  python harvester.py --config /path/to/config.json
  python harvester.py --simulate topology.json --once
"""

import argparse
import json
import logging
import os
import sys
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from filelock import FileLock, Timeout

from activity import ActivityLog, DEFAULT_DEPTH
from allocator import AllocationResult, JobAssignment, allocate, allocate_filler
from cluster import Cluster, HttpCluster, Node, SimulatedCluster
from cycle_info import INFO_FILENAME, build_cycle_info, write_cycle_info
from estimator import Estimator, select_estimator
from inventory import (
    CapacityMap,
    build_inflight_inventory,
    list_running_jobs,
    probe_capacity_map,
    summarize_running,
    terminate_filler_jobs,
)
from jobs import JobKind, all_scripts, script_for
from mode import GROW_THRESHOLD, Mode, ModeDecision, decide_mode
from predictor import TargetState, assess_targets
from report import DEFAULT_TOP_TARGETS, render_status
from scanner import categorize, discover, read_nodes
from sizing import (
    EXTRACT_FLOOR,
    OVERBOOK,
    extract_threads_to_floor,
    replenish_threads_to_ceiling,
    suppress_threads,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
    datefmt='%H:%M:%S'
)

DEFAULT_ROOT = "home"
CYCLE_DELAY_SECONDS = 10
DEFAULT_API_URL = "http://localhost:8700"


@dataclass
class CycleResult:
    """Everything one cycle decided. Lives until the report is written."""
    decision: Optional[ModeDecision] = None
    running: Dict[JobKind, int] = field(default_factory=dict)
    dispatched: Dict[JobKind, int] = field(default_factory=lambda: {kind: 0 for kind in JobKind})
    unmet: Dict[JobKind, int] = field(default_factory=lambda: {kind: 0 for kind in JobKind})
    assignments: List[JobAssignment] = field(default_factory=list)
    targets: List[TargetState] = field(default_factory=list)
    runner_count: int = 0
    free_capacity: float = 0.0
    filler_released: int = 0
    waiting: Optional[str] = None

    def record(self, allocation: AllocationResult):
        self.dispatched[allocation.kind] += allocation.placed
        self.unmet[allocation.kind] += allocation.unmet
        self.assignments.extend(allocation.assignments)


# =============================================================================
# Config
# =============================================================================

def load_config(config_path: str, required: bool = True) -> dict:
    if not Path(config_path).exists():
        if not required:
            return {}
        template = Path(config_path).parent / "config.template.json"
        print(f"ERROR: Config file not found: {config_path}")
        if template.exists():
            print(f"  Copy the template and fill in your values:")
            print(f"  cp {template} {config_path}")
        sys.exit(1)
    with open(config_path) as f:
        return json.load(f)


def build_cluster(config: dict, config_dir: Path, simulate: Optional[str] = None) -> Cluster:
    """Pick the cluster backend from config (or --simulate)."""
    cluster_config = config.get("cluster", {})
    analytic = bool(config.get("use_analytic_model", False))

    topology_file = simulate
    if topology_file is None and cluster_config.get("backend") == "simulated":
        topology_file = cluster_config.get("topology_file")
        if not topology_file:
            raise ValueError("cluster.backend 'simulated' needs cluster.topology_file")
        if not Path(topology_file).is_absolute():
            topology_file = str((config_dir / topology_file).resolve())

    if topology_file:
        cluster = SimulatedCluster.from_file(topology_file)
        cluster.analytic_model = cluster.analytic_model or analytic
        return cluster

    return HttpCluster(
        cluster_config.get("api_url", DEFAULT_API_URL),
        timeout=float(cluster_config.get("timeout_seconds", 5)),
        analytic_model=analytic,
    )


# =============================================================================
# Harvester
# =============================================================================

class Harvester:
    def __init__(self, config: dict, cluster: Cluster, config_dir: Optional[Path] = None):
        self.config = config
        self.cluster = cluster
        self.logger = logging.getLogger("harvester")

        # Use HARVEST_LOG_LEVEL env var, default to INFO
        log_level = os.environ.get("HARVEST_LOG_LEVEL", "INFO").upper()
        try:
            self.logger.setLevel(getattr(logging, log_level))
        except AttributeError:
            self.logger.setLevel(logging.INFO)
            self.logger.warning(f"Invalid HARVEST_LOG_LEVEL '{log_level}', defaulting to INFO")

        # Resolve paths relative to config file location
        config_dir = Path(config_dir or Path(__file__).parent)
        shared_path = Path(config.get("shared_path", "../"))
        if not shared_path.is_absolute():
            shared_path = (config_dir / shared_path).resolve()
        self.shared_path = shared_path

        self.state_path = self.shared_path / "harvest"
        self.log_path = self.shared_path / "logs"
        for path in [self.state_path, self.log_path]:
            path.mkdir(parents=True, exist_ok=True)
        self.info_file = self.state_path / INFO_FILENAME
        self.status_file = self.state_path / "status.txt"
        self.decision_log = self.log_path / "harvest_decisions.log"
        self.lock = FileLock(str(self.state_path / "harvester.lock"), timeout=0)

        self.root = config.get("root_node", DEFAULT_ROOT)
        self.exclude_root = bool(config.get("exclude_root", True))
        self.use_analytic_model = bool(config.get("use_analytic_model", False))
        self.penalize_security = bool(config.get("penalize_security", False))

        thresholds = config.get("thresholds", {})
        self.grow_threshold = float(thresholds.get("grow_threshold", GROW_THRESHOLD))
        self.extract_floor = float(thresholds.get("extract_floor", EXTRACT_FLOOR))
        self.overbook = float(thresholds.get("overbook", OVERBOOK))
        self.cycle_delay = float(config.get("timeouts", {}).get("cycle_delay_seconds", CYCLE_DELAY_SECONDS))
        self.top_targets = int(config.get("report_top_targets", DEFAULT_TOP_TARGETS))

        self.activity = ActivityLog(config.get("activity_log_depth", DEFAULT_DEPTH))
        self.print_status = True
        self.sleep = time.sleep
        self.running = True

    @classmethod
    def from_config_file(cls, config_path: str, simulate: Optional[str] = None) -> "Harvester":
        config = load_config(config_path, required=simulate is None)
        config_dir = Path(config_path).resolve().parent
        return cls(config, build_cluster(config, config_dir, simulate), config_dir)

    # =========================================================================
    # Logging
    # =========================================================================

    def log_decision(self, decision_type: str, message: str, details: dict = None):
        """Log a harvester decision for monitoring."""
        entry = {
            "timestamp": datetime.now().isoformat(),
            "type": decision_type,
            "message": message,
            "details": details or {}
        }
        try:
            with open(self.decision_log, 'a') as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            self.logger.warning(f"Failed to write decision log: {e}")

        self.logger.info(f"[{decision_type}] {message}")

    # =========================================================================
    # Cycle stages
    # =========================================================================

    def _escalate(self, nodes: List[Node]):
        for node in nodes:
            if node.has_root:
                continue
            if self.cluster.try_escalate(node.host):
                node.has_root = True
                self.activity.add(f"Root access gained on {node.host}")
                self.logger.info(f"Root access gained on {node.host}")

    def _deploy(self, runners: List[str]):
        scripts = all_scripts()
        for host in runners:
            if not self.cluster.deploy(scripts, host):
                self.logger.warning(f"Failed to deploy job scripts to {host}")

    def _main_threads_needed(self, mode: Mode, state: TargetState, estimator: Estimator) -> int:
        if mode is Mode.EXTRACT:
            if state.predicted_fraction < self.grow_threshold:
                return 0
            return extract_threads_to_floor(state.snapshot, state.predicted_resource, estimator,
                                            self.extract_floor)
        if state.predicted_fraction >= 1:
            return 0
        return replenish_threads_to_ceiling(state.snapshot, state.predicted_resource, estimator,
                                            self.overbook)

    def _dispatch_main(self, result: CycleResult, capacity: CapacityMap,
                       estimator: Estimator) -> Dict[str, int]:
        """Allocate the mode's job kind. Returns threads placed per target."""
        decision = result.decision
        kind = decision.mode.job_kind
        opposite = decision.mode.opposite.job_kind
        pending: Dict[str, int] = {}

        if result.running.get(opposite, 0) > 0:
            result.waiting = f"{opposite.value} jobs still running, holding {kind.value}"
            self.activity.add(f"Waiting for {opposite.value} jobs to finish before {kind.value}")
            return pending

        script = script_for(kind)
        unit_cost = self.cluster.script_cost(script)
        if unit_cost <= 0:
            self.activity.add(f"{script} reports no unit cost, skipping {kind.value}")
            return pending

        for state in result.targets:
            needed = self._main_threads_needed(decision.mode, state, estimator)
            if needed <= 0:
                continue
            allocation = allocate(self.cluster, capacity, kind, needed, state.host, unit_cost)
            result.record(allocation)
            if allocation.placed:
                pending[state.host] = allocation.placed

        placed = result.dispatched[kind]
        if placed > 0:
            self.activity.add(f"{kind.value.upper()} dispatched ({placed}t)")
        return pending

    def _dispatch_suppress(self, result: CycleResult, capacity: CapacityMap, pending: Dict[str, int]):
        script = script_for(JobKind.SUPPRESS)
        unit_cost = self.cluster.script_cost(script)
        mode = result.decision.mode

        for state in result.targets:
            placed = pending.get(state.host, 0)
            needed = suppress_threads(
                state.predicted_security,
                state.min_security,
                pending_extract=placed if mode is Mode.EXTRACT else 0,
                pending_replenish=placed if mode is Mode.REPLENISH else 0,
            )
            if needed <= 0:
                continue
            if unit_cost <= 0:
                self.activity.add(f"{script} reports no unit cost, skipping suppress")
                return
            result.record(allocate(self.cluster, capacity, JobKind.SUPPRESS, needed, state.host, unit_cost))

        placed = result.dispatched[JobKind.SUPPRESS]
        if placed > 0:
            self.activity.add(f"SUPPRESS dispatched ({placed}t)")

    def _dispatch_filler(self, result: CycleResult, capacity: CapacityMap):
        unit_cost = self.cluster.script_cost(script_for(JobKind.FILLER))
        allocation = allocate_filler(self.cluster, capacity, unit_cost)
        result.record(allocation)
        if allocation.placed > 0:
            self.activity.add(f"FILLER utilizing {allocation.placed} idle threads")

    def run_cycle(self) -> CycleResult:
        """One full pass: discover, predict, decide, size, allocate."""
        result = CycleResult()

        nodes = read_nodes(self.cluster, discover(self.cluster, self.root))
        self._escalate(nodes)
        topology = categorize(nodes, self.root, self.exclude_root)
        result.runner_count = len(topology.runners)

        # Without runners the pass still runs so sizing shows up as unmet
        if not topology.runners:
            result.waiting = "no runner nodes available"
            self.activity.add("No runner nodes available")

        self._deploy(topology.runners)
        result.filler_released = terminate_filler_jobs(self.cluster, topology.runners)

        running_jobs = list_running_jobs(self.cluster, topology.runners)
        inventory = build_inflight_inventory(running_jobs)
        result.running = summarize_running(running_jobs)

        estimator = select_estimator(self.cluster, self.use_analytic_model)
        result.targets = assess_targets(self.cluster, topology.targets, inventory, estimator,
                                        self.penalize_security)
        result.decision = decide_mode(result.running, result.targets, self.grow_threshold)

        # Capacity is re-probed per stage; dispatched jobs already hold theirs
        capacity = probe_capacity_map(self.cluster, topology.runners)
        result.free_capacity = sum(capacity.values())
        pending = self._dispatch_main(result, capacity, estimator)
        self._dispatch_suppress(result, probe_capacity_map(self.cluster, topology.runners), pending)
        self._dispatch_filler(result, probe_capacity_map(self.cluster, topology.runners))

        if not any(result.dispatched[kind] for kind in (JobKind.EXTRACT, JobKind.REPLENISH, JobKind.SUPPRESS)):
            if not result.waiting:
                self.activity.add("Waiting for targets or capacity to free up")

        return result

    def publish(self, result: CycleResult):
        """Write cycle info + status report, log the cycle summary."""
        info = build_cycle_info(result)
        if not write_cycle_info(self.info_file, info):
            self.logger.debug("Cycle info locked by a reader, skipped this cycle")

        report = render_status(result, self.activity, self.top_targets)
        try:
            self.status_file.write_text(report + "\n", encoding="utf-8")
        except OSError as e:
            self.logger.warning(f"Failed to write status report: {e}")
        if self.print_status:
            print(report, flush=True)

        decision = result.decision
        mode = decision.mode.value if decision else "none"
        reason = decision.reason if decision else result.waiting
        self.log_decision(
            "CYCLE",
            f"Mode: {mode} ({reason}), "
            f"new extract:{result.dispatched[JobKind.EXTRACT]} replenish:{result.dispatched[JobKind.REPLENISH]} "
            f"suppress:{result.dispatched[JobKind.SUPPRESS]} filler:{result.dispatched[JobKind.FILLER]}",
            {
                "locked": decision.locked if decision else False,
                "runners": result.runner_count,
                "targets": len(result.targets),
                "unmet": info["unmet"],
                "filler_released": result.filler_released,
            })

    # =========================================================================
    # Main Loop
    # =========================================================================

    def acquire_lock(self):
        try:
            self.lock.acquire()
        except Timeout:
            print(
                f"ERROR: Another harvester already holds lock: {self.lock.lock_file}",
                file=sys.stderr,
            )
            sys.exit(1)

    def run(self, max_cycles: Optional[int] = None):
        """Main harvester loop. A failed cycle is logged and the loop carries on."""
        self.acquire_lock()
        self.logger.info(f"Starting harvester: root={self.root}, cycle delay {self.cycle_delay}s")
        self.logger.info(f"Cluster backend: {type(self.cluster).__name__}, "
                         f"analytic model: {self.use_analytic_model}")

        cycles = 0
        try:
            while self.running:
                try:
                    result = self.run_cycle()
                    self.publish(result)
                except Exception as e:
                    self.logger.error(f"Cycle failed: {e}")
                    self.logger.debug(traceback.format_exc())
                    self.activity.add(f"Cycle failed: {e}")

                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                self.sleep(self.cycle_delay)

        except KeyboardInterrupt:
            self.logger.info("Shutting down...")
        finally:
            self.lock.release()

    def stop(self):
        self.running = False


def main():
    parser = argparse.ArgumentParser(description="Resource harvester")
    default_config = Path(__file__).parent / "config.json"
    parser.add_argument("--config", default=str(default_config),
                        help="Path to config file")
    parser.add_argument("--simulate", metavar="TOPOLOGY",
                        help="Run against a simulated fleet loaded from a JSON topology file")
    parser.add_argument("--once", action="store_true",
                        help="Run a single cycle and exit")
    parser.add_argument("--quiet", action="store_true",
                        help="Do not print the status report to stdout")
    args = parser.parse_args()

    harvester = Harvester.from_config_file(args.config, simulate=args.simulate)
    harvester.print_status = not args.quiet
    harvester.run(max_cycles=1 if args.once else None)


if __name__ == "__main__":
    main()
