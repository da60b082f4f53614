#!/usr/bin/env python3
"""
Node directory - walks the fleet graph and sorts nodes into targets and runners.

Discovery is a breadth-first traversal from the root node. Nothing is cached:
the harvester rediscovers the whole topology every cycle.

Usage:
    from scanner import discover, read_nodes, categorize
    hosts = discover(cluster, "home")
    topology = categorize(read_nodes(cluster, hosts), root="home")
"""

from collections import deque
from dataclasses import dataclass, field
from typing import List

from cluster import Cluster, Node


@dataclass
class Topology:
    targets: List[str] = field(default_factory=list)
    runners: List[str] = field(default_factory=list)


def discover(cluster: Cluster, root: str) -> List[str]:
    """Return every host reachable from `root`, in BFS order (root first)."""
    visited = {root}
    order = []
    queue = deque([root])

    while queue:
        host = queue.popleft()
        order.append(host)
        for neighbor in cluster.neighbors(host):
            if neighbor not in visited:
                visited.add(neighbor)
                queue.append(neighbor)

    return order


def read_nodes(cluster: Cluster, hosts: List[str]) -> List[Node]:
    """One node record per host, shared by escalation and classification."""
    return [cluster.node(host) for host in hosts]


def categorize(nodes: List[Node], root: str, exclude_root: bool = True) -> Topology:
    """Split discovered nodes into targets and runners.

    Target: holds resource and is not a donor node.
    Runner: has capacity and root access.
    The root is never a target; it is a runner only when exclude_root is off.
    A node may be both.
    """
    topology = Topology()

    for node in nodes:
        is_root = node.host == root

        if node.max_resource > 0 and not node.donor and not is_root:
            topology.targets.append(node.host)

        if node.max_capacity > 0 and node.has_root and not (is_root and exclude_root):
            topology.runners.append(node.host)

    return topology
