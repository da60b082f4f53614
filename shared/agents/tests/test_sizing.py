#!/usr/bin/env python3
"""
Tests for sizing.py - extract/replenish/suppress thread counts.
"""

import math
import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from cluster import TargetSnapshot
from estimator import AnalyticEstimator, Estimator
from sizing import (
    _search_growth_threads,
    extract_threads_to_floor,
    replenish_threads_to_ceiling,
    suppress_threads,
)


class FixedRateEstimator(Estimator):
    """1% yield per extract thread, 1.01x growth per replenish thread."""

    def yield_per_thread(self, snapshot):
        return 0.01

    def growth_multiplier(self, snapshot, threads):
        return 1.01 ** threads

    def threads_for_multiplier(self, snapshot, multiplier):
        if multiplier <= 1:
            return 0.0
        return math.log(multiplier) / math.log(1.01)


def snap(**kwargs):
    defaults = dict(
        host="alpha", max_resource=1000.0, resource=1000.0, min_security=1.0, security=10.0,
        controller_skill=100, growth_factor=50.0, has_root=True,
    )
    defaults.update(kwargs)
    return TargetSnapshot(**defaults)


class TestExtractSizing(unittest.TestCase):

    def setUp(self):
        self.estimator = FixedRateEstimator()

    def test_full_target_drained_to_floor(self):
        # (1000 - 50) / (1000 * 0.01)
        self.assertEqual(extract_threads_to_floor(snap(), 1000.0, self.estimator), 95)

    def test_at_or_below_floor_is_zero(self):
        for predicted in (0.0, 10.0, 49.9, 50.0):
            self.assertEqual(extract_threads_to_floor(snap(), predicted, self.estimator), 0)

    def test_floor_check_happens_before_estimator(self):
        estimator = MagicMock(spec=Estimator)
        self.assertEqual(extract_threads_to_floor(snap(), 50.0, estimator), 0)
        estimator.yield_per_thread.assert_not_called()

    def test_zero_yield_is_zero(self):
        estimator = MagicMock(spec=Estimator)
        estimator.yield_per_thread.return_value = 0.0
        self.assertEqual(extract_threads_to_floor(snap(), 1000.0, estimator), 0)

    def test_custom_floor(self):
        # (1000 - 500) / 10
        self.assertEqual(extract_threads_to_floor(snap(), 1000.0, self.estimator, floor=0.5), 50)


class TestReplenishSizing(unittest.TestCase):

    def setUp(self):
        self.estimator = FixedRateEstimator()

    def test_at_or_above_ceiling_is_zero(self):
        for predicted in (1000.0, 1500.0):
            self.assertEqual(replenish_threads_to_ceiling(snap(), predicted, self.estimator), 0)

    def test_overbooked_thread_count(self):
        # ceil(ln 2 / ln 1.01) = 70, overbooked by 1.15 -> 81
        self.assertEqual(replenish_threads_to_ceiling(snap(), 500.0, self.estimator), 81)

    def test_empty_target_treated_as_one_unit(self):
        raw = math.ceil(math.log(1000) / math.log(1.01))
        self.assertEqual(replenish_threads_to_ceiling(snap(), 0.0, self.estimator), math.ceil(raw * 1.15))

    def test_no_overbook(self):
        self.assertEqual(replenish_threads_to_ceiling(snap(), 500.0, self.estimator, overbook=1.0), 70)

    def test_non_increasing_in_predicted_resource(self):
        for estimator in (self.estimator, AnalyticEstimator()):
            counts = [replenish_threads_to_ceiling(snap(), m, estimator) for m in range(1, 1001, 37)]
            self.assertEqual(counts, sorted(counts, reverse=True))

    def test_analytic_uses_minimal_search(self):
        estimator = AnalyticEstimator()
        start = snap(resource=400.0)
        threads = _search_growth_threads(start, 2.5, estimator)
        self.assertGreaterEqual(estimator.growth_multiplier(start, threads), 2.5)
        self.assertLess(estimator.growth_multiplier(start, threads - 1), 2.5)
        self.assertEqual(replenish_threads_to_ceiling(snap(), 400.0, estimator, overbook=1.0), threads)

    def test_unreachable_growth_is_zero(self):
        self.assertEqual(replenish_threads_to_ceiling(snap(growth_factor=0), 10.0, AnalyticEstimator()), 0)


class TestSuppressSizing(unittest.TestCase):

    def test_cancels_security_excess(self):
        # (10 - 2) / 0.05
        self.assertEqual(suppress_threads(10.0, 2.0), 160)

    def test_at_minimum_is_zero(self):
        self.assertEqual(suppress_threads(2.0, 2.0), 0)
        self.assertEqual(suppress_threads(1.0, 2.0), 0)

    def test_pending_extract_counts(self):
        # 25 * 0.002 = 0.05 -> exactly one thread
        self.assertEqual(suppress_threads(2.0, 2.0, pending_extract=25), 1)

    def test_pending_replenish_counts(self):
        # 25 * 0.004 = 0.1 -> two threads
        self.assertEqual(suppress_threads(2.0, 2.0, pending_replenish=25), 2)

    def test_partial_thread_rounds_up(self):
        self.assertEqual(suppress_threads(2.01, 2.0), 1)


if __name__ == "__main__":
    unittest.main()
