#!/usr/bin/env python3
"""
Extraction/growth estimators used by prediction and sizing.

Two strategies behind one interface:
  - AnalyticEstimator:    closed-form model evaluated on the target snapshot.
                          Only used when enabled in config AND the cluster
                          reports that its telemetry supports it.
  - ApproximateEstimator: asks the cluster for live per-target estimates.

The harvester selects one strategy per cycle via select_estimator().
"""

import math
from abc import ABC, abstractmethod

from cluster import Cluster, TargetSnapshot

# Analytic model constants
BASE_GROWTH_RATE = 1.03
MAX_GROWTH_RATE = 1.0035
EXTRACT_YIELD_DIVISOR = 240


class Estimator(ABC):
    is_analytic = False

    @abstractmethod
    def yield_per_thread(self, snapshot: TargetSnapshot) -> float:
        """Fraction of the current resource one extract thread removes."""

    @abstractmethod
    def growth_multiplier(self, snapshot: TargetSnapshot, threads: int) -> float:
        """Resource multiplier produced by `threads` replenish threads."""

    @abstractmethod
    def threads_for_multiplier(self, snapshot: TargetSnapshot, multiplier: float) -> float:
        """Replenish threads needed to reach `multiplier` (may be fractional)."""


class AnalyticEstimator(Estimator):
    is_analytic = True

    def yield_per_thread(self, snapshot: TargetSnapshot) -> float:
        skill = snapshot.controller_skill
        if skill <= 0:
            return 0.0
        difficulty_mult = (100 - snapshot.security) / 100
        skill_mult = (skill - (snapshot.required_skill - 1)) / skill
        fraction = difficulty_mult * skill_mult / EXTRACT_YIELD_DIVISOR
        return min(1.0, max(0.0, fraction))

    def _growth_rate(self, snapshot: TargetSnapshot) -> float:
        security = max(snapshot.security, 1e-9)
        return min(MAX_GROWTH_RATE, 1 + (BASE_GROWTH_RATE - 1) / security)

    def growth_multiplier(self, snapshot: TargetSnapshot, threads: int) -> float:
        if threads <= 0 or snapshot.growth_factor <= 0:
            return 1.0
        exponent = threads * snapshot.growth_factor / 100
        return self._growth_rate(snapshot) ** exponent

    def threads_for_multiplier(self, snapshot: TargetSnapshot, multiplier: float) -> float:
        if multiplier <= 1 or snapshot.growth_factor <= 0:
            return 0.0
        per_thread = math.log(self._growth_rate(snapshot)) * snapshot.growth_factor / 100
        if per_thread <= 0:
            return 0.0
        return math.log(multiplier) / per_thread


class ApproximateEstimator(Estimator):
    def __init__(self, cluster: Cluster):
        self.cluster = cluster

    def yield_per_thread(self, snapshot: TargetSnapshot) -> float:
        return max(0.0, self.cluster.extract_yield_estimate(snapshot.host))

    def threads_for_multiplier(self, snapshot: TargetSnapshot, multiplier: float) -> float:
        if multiplier <= 1:
            return 0.0
        return max(0.0, self.cluster.growth_threads_estimate(snapshot.host, multiplier))

    def growth_multiplier(self, snapshot: TargetSnapshot, threads: int) -> float:
        # Only the inverse is available live; derive the forward curve from
        # the thread count needed to double.
        if threads <= 0:
            return 1.0
        doubling_threads = self.threads_for_multiplier(snapshot, 2.0)
        if doubling_threads <= 0:
            return 1.0
        return math.exp(threads * math.log(2) / doubling_threads)


def select_estimator(cluster: Cluster, use_analytic_model: bool) -> Estimator:
    if use_analytic_model and cluster.supports_analytic_model():
        return AnalyticEstimator()
    return ApproximateEstimator(cluster)
