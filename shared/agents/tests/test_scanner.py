#!/usr/bin/env python3
"""
Tests for scanner.py - BFS discovery and target/runner classification.

Run:
  python -m pytest tests/test_scanner.py -v
"""

import sys
import unittest
from pathlib import Path

# Allow running from agents/ directory
sys.path.insert(0, str(Path(__file__).parent.parent))

from cluster import SimulatedCluster
from scanner import categorize, discover, read_nodes


def fleet():
    return SimulatedCluster({
        "home": {"neighbors": ["alpha", "beta"], "max_capacity": 8, "has_root": True},
        "alpha": {"neighbors": ["gamma"], "max_capacity": 4, "max_resource": 100, "has_root": True},
        "beta": {"neighbors": ["gamma"], "max_resource": 50},
        "gamma": {"neighbors": ["home"], "max_capacity": 16, "has_root": True, "donor": True},
        "island": {"max_resource": 900, "has_root": True},
    })


class TestDiscover(unittest.TestCase):

    def test_bfs_order_from_root(self):
        self.assertEqual(discover(fleet(), "home"), ["home", "alpha", "beta", "gamma"])

    def test_each_node_visited_once_despite_cycles(self):
        hosts = discover(fleet(), "home")
        self.assertEqual(len(hosts), len(set(hosts)))

    def test_unreachable_node_not_discovered(self):
        self.assertNotIn("island", discover(fleet(), "home"))

    def test_discovery_from_another_root(self):
        hosts = discover(fleet(), "gamma")
        self.assertEqual(hosts[0], "gamma")
        self.assertEqual(set(hosts), {"home", "alpha", "beta", "gamma"})

    def test_lone_root(self):
        cluster = SimulatedCluster({"home": {}})
        self.assertEqual(discover(cluster, "home"), ["home"])


class TestCategorize(unittest.TestCase):

    def setUp(self):
        self.cluster = fleet()
        self.nodes = read_nodes(self.cluster, discover(self.cluster, "home"))

    def test_targets_exclude_donors_and_root(self):
        topology = categorize(self.nodes, "home")
        self.assertEqual(topology.targets, ["alpha", "beta"])

    def test_runners_need_capacity_and_root(self):
        topology = categorize(self.nodes, "home")
        # beta has no root, home is excluded by default
        self.assertEqual(topology.runners, ["alpha", "gamma"])

    def test_node_can_be_target_and_runner(self):
        topology = categorize(self.nodes, "home")
        self.assertIn("alpha", topology.targets)
        self.assertIn("alpha", topology.runners)

    def test_root_included_when_not_excluded(self):
        topology = categorize(self.nodes, "home", exclude_root=False)
        self.assertEqual(topology.runners, ["home", "alpha", "gamma"])
        self.assertNotIn("home", topology.targets)

    def test_node_records_in_discovery_order(self):
        self.assertEqual([node.host for node in self.nodes], ["home", "alpha", "beta", "gamma"])
        self.assertEqual(self.nodes[3].max_capacity, 16)
        self.assertTrue(self.nodes[3].donor)

    def test_root_granted_after_read_is_honoured(self):
        self.nodes[2].has_root = True
        self.nodes[2].max_capacity = 2
        topology = categorize(self.nodes, "home")
        self.assertIn("beta", topology.runners)

    def test_empty_graph_yields_empty_lists(self):
        cluster = SimulatedCluster({"home": {"has_root": True}})
        topology = categorize(read_nodes(cluster, discover(cluster, "home")), "home")
        self.assertEqual(topology.targets, [])
        self.assertEqual(topology.runners, [])


if __name__ == "__main__":
    unittest.main()
