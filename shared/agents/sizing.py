#!/usr/bin/env python3
"""
Thread sizing.

  extract_threads_to_floor     - drain a target down to floor * ceiling
  replenish_threads_to_ceiling - grow a target back up to its ceiling
  suppress_threads             - cancel predicted security drift

All three return non-negative ints and return 0 instead of calling the
estimator when the inputs make the answer degenerate.
"""

import math

from cluster import TargetSnapshot
from estimator import Estimator
from jobs import SECURITY_PER_EXTRACT, SECURITY_PER_REPLENISH, SECURITY_PER_SUPPRESS

EXTRACT_FLOOR = 0.05
OVERBOOK = 1.15
MAX_SEARCH_THREADS = 1_000_000


def extract_threads_to_floor(snapshot: TargetSnapshot, predicted_resource: float, estimator: Estimator,
                             floor: float = EXTRACT_FLOOR) -> int:
    ceiling = snapshot.max_resource
    if ceiling <= 0 or predicted_resource <= 0:
        return 0
    floor_resource = ceiling * floor
    if predicted_resource <= floor_resource:
        return 0

    per_thread = estimator.yield_per_thread(snapshot.with_resource(predicted_resource))
    if per_thread <= 0:
        return 0

    return math.ceil((predicted_resource - floor_resource) / (predicted_resource * per_thread))


def _search_growth_threads(snapshot: TargetSnapshot, multiplier: float, estimator: Estimator) -> int:
    """Smallest t with growth_multiplier(t) >= multiplier, or 0 if unreachable."""
    low, high = 1, 1
    while estimator.growth_multiplier(snapshot, high) < multiplier:
        if high >= MAX_SEARCH_THREADS:
            return 0
        low = high
        high = min(high * 2, MAX_SEARCH_THREADS)

    answer = high
    while low <= high:
        mid = (low + high) // 2
        if estimator.growth_multiplier(snapshot, mid) >= multiplier:
            answer = mid
            high = mid - 1
        else:
            low = mid + 1
    return answer


def replenish_threads_to_ceiling(snapshot: TargetSnapshot, predicted_resource: float, estimator: Estimator,
                                 overbook: float = OVERBOOK) -> int:
    ceiling = snapshot.max_resource
    if ceiling <= 0:
        return 0
    resource = max(1.0, predicted_resource)
    if resource >= ceiling:
        return 0

    multiplier = ceiling / resource
    start = snapshot.with_resource(resource)
    if estimator.is_analytic:
        raw = _search_growth_threads(start, multiplier, estimator)
    else:
        raw = math.ceil(estimator.threads_for_multiplier(start, multiplier))
    if raw <= 0:
        return 0

    # Overbook so jobs landing at slightly different times still reach the cap
    return math.ceil(raw * overbook)


def suppress_threads(predicted_security: float, min_security: float,
                     pending_extract: int = 0, pending_replenish: int = 0) -> int:
    pending = pending_extract * SECURITY_PER_EXTRACT + pending_replenish * SECURITY_PER_REPLENISH
    delta = predicted_security + pending - min_security
    if delta <= 0:
        return 0
    # Round off float noise so an exact multiple doesn't gain a thread
    return math.ceil(round(delta / SECURITY_PER_SUPPRESS, 9))
