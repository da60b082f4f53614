#!/usr/bin/env python3
"""
Target state prediction and ranking.

For each schedulable target, predicts where resource and security will land
once the jobs already in flight against it complete, then ranks targets by
expected value.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from cluster import Cluster, TargetSnapshot
from estimator import Estimator
from inventory import InFlightThreads
from jobs import SECURITY_PER_EXTRACT, SECURITY_PER_REPLENISH, SECURITY_PER_SUPPRESS


@dataclass
class TargetState:
    snapshot: TargetSnapshot
    inflight: InFlightThreads = field(default_factory=InFlightThreads)
    predicted_resource: float = 0.0
    predicted_security: float = 0.0
    score: float = 0.0

    @property
    def host(self) -> str:
        return self.snapshot.host

    @property
    def max_resource(self) -> float:
        return self.snapshot.max_resource

    @property
    def min_security(self) -> float:
        return self.snapshot.min_security

    @property
    def predicted_fraction(self) -> float:
        if self.max_resource <= 0:
            return 0.0
        return self.predicted_resource / self.max_resource

    @property
    def security_delta(self) -> float:
        return self.predicted_security - self.min_security


def is_schedulable(snapshot: TargetSnapshot) -> bool:
    return snapshot.max_resource > 0 and snapshot.has_root and snapshot.skill_gate


def predict_security(snapshot: TargetSnapshot, inflight: InFlightThreads) -> float:
    drift = (
        - inflight.suppress * SECURITY_PER_SUPPRESS
        + inflight.extract * SECURITY_PER_EXTRACT
        + inflight.replenish * SECURITY_PER_REPLENISH
    )
    return max(snapshot.min_security, snapshot.security + drift)


def predict_resource(snapshot: TargetSnapshot, inflight: InFlightThreads, estimator: Estimator) -> float:
    """Extract drain lands first, then replenish growth (capped at the ceiling)."""
    resource = snapshot.resource

    if inflight.extract > 0 and resource > 0:
        drained = min(1.0, estimator.yield_per_thread(snapshot) * inflight.extract)
        resource *= 1 - drained

    if inflight.replenish > 0 and resource > 0:
        multiplier = estimator.growth_multiplier(snapshot.with_resource(resource), inflight.replenish)
        resource = min(snapshot.max_resource, resource * multiplier)

    return max(0.0, resource)


def score_target(state: TargetState, penalize_security: bool = False) -> float:
    score = state.max_resource * state.snapshot.success_chance
    if penalize_security:
        score /= 1 + max(0.0, state.security_delta)
    return score


def assess_target(snapshot: TargetSnapshot, inflight: InFlightThreads, estimator: Estimator,
                  penalize_security: bool = False) -> TargetState:
    state = TargetState(
        snapshot=snapshot,
        inflight=inflight,
        predicted_resource=predict_resource(snapshot, inflight, estimator),
        predicted_security=predict_security(snapshot, inflight),
    )
    state.score = score_target(state, penalize_security)
    return state


def rank_targets(states: List[TargetState]) -> List[TargetState]:
    return sorted(states, key=lambda s: s.score, reverse=True)


def assess_targets(cluster: Cluster, targets: List[str], inventory: Dict[str, InFlightThreads],
                   estimator: Estimator, penalize_security: bool = False) -> List[TargetState]:
    """Predict and rank every schedulable target. Ungated targets are dropped."""
    states = []
    for host in targets:
        snapshot = cluster.target_snapshot(host)
        if not is_schedulable(snapshot):
            continue
        inflight = inventory.get(host, InFlightThreads())
        states.append(assess_target(snapshot, inflight, estimator, penalize_security))
    return rank_targets(states)
