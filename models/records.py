"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Tuple

SILO_IDS: Tuple[int, int] = (1, 2)


class AlertKind(str, Enum):
    """Direction in which a moisture reading left the configured band."""

    high = "high"
    low = "low"


@dataclass(frozen=True, slots=True)
class SensorSample:
    """A single digitized reading for one silo."""

    silo_id: int
    moisture: float
    temperature: float
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class SiloPair:
    """The readings of both silos taken at the same instant."""

    silo1: SensorSample
    silo2: SensorSample

    @property
    def timestamp(self) -> datetime:
        return self.silo1.timestamp

    def samples(self) -> Tuple[SensorSample, SensorSample]:
        return (self.silo1, self.silo2)

    def for_silo(self, silo_id: int) -> SensorSample:
        if silo_id == 1:
            return self.silo1
        if silo_id == 2:
            return self.silo2
        raise KeyError(f"Unknown silo {silo_id!r}.")


@dataclass(frozen=True, slots=True)
class TrendPoint:
    """One labelled position in the short-interval trend window."""

    label: str
    timestamp: datetime
    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float

    @classmethod
    def from_pair(cls, pair: SiloPair) -> "TrendPoint":
        return cls(
            label=pair.timestamp.strftime("%H:%M"),
            timestamp=pair.timestamp,
            silo1_moisture=pair.silo1.moisture,
            silo1_temp=pair.silo1.temperature,
            silo2_moisture=pair.silo2.moisture,
            silo2_temp=pair.silo2.temperature,
        )


@dataclass(frozen=True, slots=True)
class LogEntry:
    """A logsheet row covering both silos."""

    timestamp: datetime
    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float

    @classmethod
    def from_pair(cls, pair: SiloPair, timestamp: datetime | None = None) -> "LogEntry":
        return cls(
            timestamp=timestamp or pair.timestamp,
            silo1_moisture=pair.silo1.moisture,
            silo1_temp=pair.silo1.temperature,
            silo2_moisture=pair.silo2.moisture,
            silo2_temp=pair.silo2.temperature,
        )


@dataclass(frozen=True, slots=True, order=True)
class AlertKey:
    """Structured alert identity; the sequence number is unique per engine."""

    silo_id: int
    kind: AlertKind
    sequence: int

    def __str__(self) -> str:
        return f"{self.silo_id}-{self.kind.value}-{self.sequence}"


@dataclass(frozen=True, slots=True)
class Alert:
    key: AlertKey
    value: float
    timestamp: datetime

    @property
    def silo_id(self) -> int:
        return self.key.silo_id

    @property
    def kind(self) -> AlertKind:
        return self.key.kind


@dataclass(frozen=True, slots=True)
class ThresholdConfig:
    """Acceptable moisture band; replaced as a whole, never mutated."""

    min_moisture: float
    max_moisture: float


DEFAULT_THRESHOLDS = ThresholdConfig(min_moisture=4.5, max_moisture=7.0)
