#!/usr/bin/env python3
"""Bounded recent-activity log shown at the bottom of the status report."""

from collections import deque
from datetime import datetime
from typing import List, Optional

DEFAULT_DEPTH = 6
MIN_DEPTH = 6
MAX_DEPTH = 8


class ActivityLog:
    """Newest entry first; the oldest entry is evicted once `depth` is reached.

    Depth is clamped to MIN_DEPTH..MAX_DEPTH.
    """

    def __init__(self, depth: int = DEFAULT_DEPTH):
        self.depth = min(MAX_DEPTH, max(MIN_DEPTH, int(depth)))
        self._entries: deque = deque(maxlen=self.depth)

    def add(self, message: str, now: Optional[datetime] = None):
        stamp = (now or datetime.now()).strftime("%H:%M:%S")
        self._entries.appendleft(f"[{stamp}] {message}")

    def entries(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
