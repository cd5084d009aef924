"""Sensor sample production: bounded random-walk simulation and device readings."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Mapping, Optional

from models.records import SILO_IDS, SensorSample, SiloPair
from services.errors import ValidationError

# Ingestion boundary accepted from devices.
MOISTURE_RANGE = (0.0, 100.0)
TEMPERATURE_RANGE = (-40.0, 150.0)

# Physical envelope the simulator stays inside.
SIM_MOISTURE_RANGE = (3.0, 9.0)
SIM_TEMPERATURE_RANGE = (35.0, 55.0)
MOISTURE_VARIANCE = 0.5
TEMPERATURE_VARIANCE = 2.0


@dataclass(frozen=True)
class SiloState:
    moisture: float
    temperature: float


COLD_START: Mapping[int, SiloState] = {
    1: SiloState(moisture=5.8, temperature=42.0),
    2: SiloState(moisture=6.2, temperature=45.0),
}


def jitter(rng: random.Random, base: float, variance: float) -> float:
    """Return ``base`` moved by a uniform step in ``[-variance/2, variance/2)``."""
    return base + (rng.random() - 0.5) * variance


def clamp(value: float, bounds: tuple[float, float]) -> float:
    lower, upper = bounds
    return max(lower, min(upper, value))


def validate_range(field: str, value: float, bounds: tuple[float, float]) -> float:
    lower, upper = bounds
    if not math.isfinite(value) or value < lower or value > upper:
        raise ValidationError.out_of_range(field, lower, upper, value)
    return value


class SampleSource:
    """Produces one :class:`SensorSample` per silo per tick."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        initial: Optional[Mapping[int, SiloState]] = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._state: Dict[int, SiloState] = dict(initial or COLD_START)

    def state(self, silo_id: int) -> SiloState:
        return self._state[silo_id]

    def simulate(self, silo_id: int, now: datetime) -> SensorSample:
        previous = self._state[silo_id]
        moisture = clamp(
            jitter(self._rng, previous.moisture, MOISTURE_VARIANCE), SIM_MOISTURE_RANGE
        )
        temperature = clamp(
            jitter(self._rng, previous.temperature, TEMPERATURE_VARIANCE),
            SIM_TEMPERATURE_RANGE,
        )
        self._state[silo_id] = SiloState(moisture=moisture, temperature=temperature)
        return SensorSample(
            silo_id=silo_id, moisture=moisture, temperature=temperature, timestamp=now
        )

    def simulate_pair(self, now: datetime) -> SiloPair:
        silo1, silo2 = (self.simulate(silo_id, now) for silo_id in SILO_IDS)
        return SiloPair(silo1=silo1, silo2=silo2)

    @staticmethod
    def from_reading(
        silo_id: int, moisture: float, temperature: float, now: datetime
    ) -> SensorSample:
        """Validate a device reading against the ingestion boundary."""
        prefix = f"silo{silo_id}"
        validate_range(f"{prefix}_moisture", moisture, MOISTURE_RANGE)
        validate_range(f"{prefix}_temp", temperature, TEMPERATURE_RANGE)
        return SensorSample(
            silo_id=silo_id, moisture=moisture, temperature=temperature, timestamp=now
        )

    @classmethod
    def pair_from_readings(
        cls,
        silo1_moisture: float,
        silo1_temp: float,
        silo2_moisture: float,
        silo2_temp: float,
        now: datetime,
    ) -> SiloPair:
        """Validate a combined device reading; nothing is built if any field fails."""
        # Moisture fields are reported before temperatures.
        validate_range("silo1_moisture", silo1_moisture, MOISTURE_RANGE)
        validate_range("silo2_moisture", silo2_moisture, MOISTURE_RANGE)
        return SiloPair(
            silo1=cls.from_reading(1, silo1_moisture, silo1_temp, now),
            silo2=cls.from_reading(2, silo2_moisture, silo2_temp, now),
        )
