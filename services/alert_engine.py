"""Threshold evaluation and the bounded set of outstanding alerts."""

from __future__ import annotations

import itertools
import logging
from collections import OrderedDict
from typing import Iterator, Optional, Tuple

from models.records import Alert, AlertKey, AlertKind, SensorSample, ThresholdConfig

logger = logging.getLogger(__name__)

ALERT_CAPACITY = 5


def classify_moisture(value: float, thresholds: ThresholdConfig) -> str:
    """Return ``"high"``, ``"low"`` or ``"normal"`` for a moisture reading."""
    if value > thresholds.max_moisture:
        return AlertKind.high.value
    if value < thresholds.min_moisture:
        return AlertKind.low.value
    return "normal"


class AlertEngine:
    """Creates an alert for every sample outside the band.

    Alerts are not de-duplicated: a silo that stays out of range raises a new
    alert on every evaluation. Records leave the outstanding set only when
    dismissed or when pushed out by newer ones once ``capacity`` is reached.
    """

    def __init__(self, capacity: int = ALERT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("Alert capacity must be positive.")
        self.capacity = capacity
        self._alerts: "OrderedDict[AlertKey, Alert]" = OrderedDict()
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        return len(self._alerts)

    def __iter__(self) -> Iterator[Alert]:
        return iter(self._alerts.values())

    def evaluate(self, sample: SensorSample, thresholds: ThresholdConfig) -> Optional[Alert]:
        status = classify_moisture(sample.moisture, thresholds)
        if status == "normal":
            return None

        key = AlertKey(
            silo_id=sample.silo_id,
            kind=AlertKind(status),
            sequence=next(self._sequence),
        )
        alert = Alert(key=key, value=sample.moisture, timestamp=sample.timestamp)
        self._alerts[key] = alert
        while len(self._alerts) > self.capacity:
            evicted, _ = self._alerts.popitem(last=False)
            logger.debug("Alert evicted", extra={"sequence": evicted.sequence})

        logger.info(
            "Moisture out of range",
            extra={
                "silo_id": sample.silo_id,
                "kind": key.kind.value,
                "value": sample.moisture,
                "sequence": key.sequence,
            },
        )
        return alert

    def dismiss(self, key: AlertKey) -> bool:
        """Remove ``key`` if outstanding; unknown keys are ignored."""
        return self._alerts.pop(key, None) is not None

    def outstanding(self) -> Tuple[Alert, ...]:
        return tuple(self._alerts.values())
