#!/usr/bin/env python3
"""
Fleet-wide mode decision: Extract or Replenish, never both.

Once jobs of one kind are running, the mode is locked to that kind until the
fleet drains. Mixed in-flight kinds throw off the predictions the rest of the
cycle depends on, so a mixed fleet is forced to Extract.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from jobs import JobKind
from predictor import TargetState

GROW_THRESHOLD = 0.75


class Mode(Enum):
    EXTRACT = "extract"
    REPLENISH = "replenish"

    @property
    def job_kind(self) -> JobKind:
        return JobKind.EXTRACT if self is Mode.EXTRACT else JobKind.REPLENISH

    @property
    def opposite(self) -> "Mode":
        return Mode.REPLENISH if self is Mode.EXTRACT else Mode.EXTRACT


@dataclass(frozen=True)
class ModeDecision:
    mode: Mode
    locked: bool
    reason: str


def decide_mode(running: Dict[JobKind, int], ranked: List[TargetState],
                grow_threshold: float = GROW_THRESHOLD) -> ModeDecision:
    extracting = running.get(JobKind.EXTRACT, 0) > 0
    replenishing = running.get(JobKind.REPLENISH, 0) > 0

    if extracting and replenishing:
        return ModeDecision(Mode.EXTRACT, True, "mixed activity detected")
    if extracting:
        return ModeDecision(Mode.EXTRACT, True, "existing extract jobs")
    if replenishing:
        return ModeDecision(Mode.REPLENISH, True, "existing replenish jobs")

    if not ranked:
        return ModeDecision(Mode.REPLENISH, False, "no viable targets")

    if ranked[0].predicted_fraction >= grow_threshold:
        return ModeDecision(Mode.EXTRACT, False, "resource healthy")
    return ModeDecision(Mode.REPLENISH, False, "resource low")
