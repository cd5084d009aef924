"""Fixed-length sliding window of recent readings for live charts."""

from __future__ import annotations

import random
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Iterable, Optional, Tuple

from models.records import SiloPair, TrendPoint
from services.sample_source import jitter

# Baselines used for the synthetic history drawn at start-up.
_SEED_BASELINES = {
    "silo1_moisture": (5.5, 1.5),
    "silo2_moisture": (6.0, 1.5),
    "silo1_temp": (42.0, 5.0),
    "silo2_temp": (45.0, 5.0),
}


def synthetic_trend(
    capacity: int,
    now: datetime,
    spacing: timedelta,
    rng: Optional[random.Random] = None,
) -> list[TrendPoint]:
    """Build ``capacity`` points ending at ``now``, oldest first."""
    rng = rng or random.Random()
    points = []
    for offset in range(capacity - 1, -1, -1):
        timestamp = now - offset * spacing
        values = {
            name: jitter(rng, base, variance)
            for name, (base, variance) in _SEED_BASELINES.items()
        }
        points.append(TrendPoint(label=timestamp.strftime("%H:%M"), timestamp=timestamp, **values))
    return points


class TrendBuffer:
    """FIFO window whose length never changes once constructed."""

    def __init__(self, initial: Iterable[TrendPoint]) -> None:
        points = list(initial)
        if not points:
            raise ValueError("TrendBuffer needs at least one initial point.")
        self.capacity = len(points)
        self._points: Deque[TrendPoint] = deque(points, maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._points)

    def append(self, pair: SiloPair) -> Tuple[TrendPoint, ...]:
        self._points.append(TrendPoint.from_pair(pair))
        return self.snapshot()

    def reset(self, points: Iterable[TrendPoint]) -> None:
        replacement = list(points)
        if len(replacement) != self.capacity:
            raise ValueError(
                f"Expected {self.capacity} trend points, got {len(replacement)}."
            )
        self._points = deque(replacement, maxlen=self.capacity)

    def snapshot(self) -> Tuple[TrendPoint, ...]:
        return tuple(self._points)
