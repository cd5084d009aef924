"""Long-interval logsheet history gated by elapsed time."""

from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from models.records import LogEntry, SiloPair
from services.sample_source import jitter

LOG_INTERVAL = timedelta(minutes=30)


def synthetic_logsheet(
    count: int,
    now: datetime,
    interval: timedelta = LOG_INTERVAL,
    rng: Optional[random.Random] = None,
) -> list[LogEntry]:
    """Build ``count`` entries spaced ``interval`` apart, the last one at ``now``."""
    rng = rng or random.Random()
    return [
        LogEntry(
            timestamp=now - offset * interval,
            silo1_moisture=jitter(rng, 5.5, 1.5),
            silo1_temp=jitter(rng, 42.0, 5.0),
            silo2_moisture=jitter(rng, 6.0, 1.5),
            silo2_temp=jitter(rng, 45.0, 5.0),
        )
        for offset in range(count - 1, -1, -1)
    ]


class LogStore:
    """Append-only sequence of :class:`LogEntry` with strictly increasing timestamps.

    Consecutive entries are always at least ``interval`` apart. The store keeps
    everything it is given; retention is left to whoever exports the rows.
    """

    def __init__(self, interval: timedelta = LOG_INTERVAL) -> None:
        self.interval = interval
        self._entries: List[LogEntry] = []
        self.last_log_time: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._entries)

    def seed(self, entries: list[LogEntry]) -> None:
        """Pre-load history at cold start; only valid on an empty store."""
        if self._entries:
            raise ValueError("LogStore can only be seeded while empty.")
        for previous, current in zip(entries, entries[1:]):
            if current.timestamp - previous.timestamp < self.interval:
                raise ValueError("Seed entries must be spaced at least one interval apart.")
        self._entries.extend(entries)
        if entries:
            self.last_log_time = entries[-1].timestamp

    def due(self, now: datetime) -> bool:
        if self.last_log_time is None:
            return True
        return now - self.last_log_time >= self.interval

    def maybe_append(self, pair: SiloPair, now: datetime) -> Optional[LogEntry]:
        """Record ``pair`` if a full interval has elapsed; returns the new entry or ``None``."""
        if not self.due(now):
            return None
        entry = LogEntry.from_pair(pair, timestamp=now)
        self._entries.append(entry)
        self.last_log_time = now
        return entry

    def entries(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        tz: timezone = timezone.utc,
    ) -> Tuple[LogEntry, ...]:
        """Return entries in order, optionally limited to whole days ``start``..``end``."""
        lower = datetime.combine(start, time.min, tzinfo=tz) if start else None
        upper = datetime.combine(end, time.max, tzinfo=tz) if end else None
        return tuple(
            entry
            for entry in self._entries
            if (lower is None or entry.timestamp >= lower)
            and (upper is None or entry.timestamp <= upper)
        )
