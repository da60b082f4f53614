#!/usr/bin/env python3
"""
Tests for inventory.py - capacity probing and in-flight job aggregation.
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from cluster import SimulatedCluster
from inventory import (
    InFlightThreads,
    build_inflight_inventory,
    list_running_jobs,
    probe_capacity_map,
    probe_free_capacity,
    summarize_running,
    terminate_filler_jobs,
)
from jobs import JobKind

COSTS = {"extract.py": 1, "replenish.py": 1, "suppress.py": 1, "filler.py": 2, "other.py": 1}


def busy_fleet():
    cluster = SimulatedCluster({
        "r1": {"max_capacity": 10, "has_root": True},
        "r2": {"max_capacity": 10, "has_root": True},
        "r3": {"max_capacity": 2, "has_root": True},
    }, script_costs=COSTS)
    cluster.dispatch("extract.py", "r1", 3, ["t1"])
    cluster.dispatch("filler.py", "r1", 1)
    cluster.dispatch("replenish.py", "r2", 2, ["t1"])
    cluster.dispatch("suppress.py", "r2", 4, ["t2"])
    cluster.dispatch("other.py", "r3", 2, ["t1"])
    return cluster


class TestCapacityProbe(unittest.TestCase):

    def test_free_capacity_is_total_minus_used(self):
        cluster = busy_fleet()
        self.assertEqual(probe_free_capacity(cluster, "r1"), 5)
        self.assertEqual(probe_free_capacity(cluster, "r2"), 4)

    def test_full_runners_left_out_of_map(self):
        capacity = probe_capacity_map(busy_fleet(), ["r1", "r2", "r3"])
        self.assertEqual(capacity, {"r1": 5, "r2": 4})

    def test_map_keeps_directory_order(self):
        capacity = probe_capacity_map(busy_fleet(), ["r2", "r1"])
        self.assertEqual(list(capacity), ["r2", "r1"])


class TestInFlightInventory(unittest.TestCase):

    def setUp(self):
        self.cluster = busy_fleet()
        self.running = list_running_jobs(self.cluster, ["r1", "r2", "r3"])

    def test_threads_aggregated_per_target(self):
        inventory = build_inflight_inventory(self.running)
        self.assertEqual(inventory["t1"], InFlightThreads(extract=3, replenish=2, suppress=0))
        self.assertEqual(inventory["t2"], InFlightThreads(suppress=4))

    def test_foreign_and_filler_jobs_ignored(self):
        inventory = build_inflight_inventory(self.running)
        self.assertEqual(set(inventory), {"t1", "t2"})
        self.assertEqual(inventory["t1"].extract, 3)

    def test_jobs_without_target_ignored(self):
        self.cluster.dispatch("extract.py", "r2", 1)
        running = list_running_jobs(self.cluster, ["r1", "r2"])
        self.assertEqual(build_inflight_inventory(running)["t1"].extract, 3)

    def test_rebuilt_from_scratch(self):
        first = build_inflight_inventory(self.running)
        second = build_inflight_inventory(self.running)
        self.assertEqual(first, second)
        self.assertIsNot(first["t1"], second["t1"])


class TestRunningSummary(unittest.TestCase):

    def test_summary_counts_all_kinds(self):
        cluster = busy_fleet()
        summary = summarize_running(list_running_jobs(cluster, ["r1", "r2", "r3"]))
        self.assertEqual(summary[JobKind.EXTRACT], 3)
        self.assertEqual(summary[JobKind.REPLENISH], 2)
        self.assertEqual(summary[JobKind.SUPPRESS], 4)
        self.assertEqual(summary[JobKind.FILLER], 1)

    def test_terminate_filler_frees_capacity(self):
        cluster = busy_fleet()
        released = terminate_filler_jobs(cluster, ["r1", "r2", "r3"])
        self.assertEqual(released, 1)
        self.assertEqual(probe_free_capacity(cluster, "r1"), 7)
        summary = summarize_running(list_running_jobs(cluster, ["r1", "r2", "r3"]))
        self.assertEqual(summary[JobKind.FILLER], 0)
        self.assertEqual(summary[JobKind.EXTRACT], 3)


if __name__ == "__main__":
    unittest.main()
