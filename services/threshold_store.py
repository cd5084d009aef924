"""Single source of truth for the acceptable moisture band."""

from __future__ import annotations

import logging
import math
from threading import Lock
from typing import Callable, List

from datastore.moisture_settings import MoistureSettingsTable
from models.records import DEFAULT_THRESHOLDS, ThresholdConfig
from services.errors import PersistenceError, TransportError, ValidationError

logger = logging.getLogger(__name__)

THRESHOLD_FLOOR = 0.0
THRESHOLD_CEILING = 15.0

ThresholdListener = Callable[[ThresholdConfig], None]


def validate_thresholds(min_moisture: float, max_moisture: float) -> ThresholdConfig:
    """Return a config for the pair or raise :class:`ValidationError`."""
    for name, value in (("min_moisture", min_moisture), ("max_moisture", max_moisture)):
        if not math.isfinite(value):
            raise ValidationError(f"{name} must be a finite number.", field=name, value=value)
    if min_moisture >= max_moisture:
        raise ValidationError(
            "min_moisture must be lower than max_moisture.",
            field="min_moisture",
            value=min_moisture,
        )
    if min_moisture < THRESHOLD_FLOOR or max_moisture > THRESHOLD_CEILING:
        raise ValidationError(
            f"Moisture thresholds must lie between {THRESHOLD_FLOOR:g}% and {THRESHOLD_CEILING:g}%.",
            field="min_moisture" if min_moisture < THRESHOLD_FLOOR else "max_moisture",
            lower=THRESHOLD_FLOOR,
            upper=THRESHOLD_CEILING,
            value=min_moisture if min_moisture < THRESHOLD_FLOOR else max_moisture,
        )
    return ThresholdConfig(min_moisture=float(min_moisture), max_moisture=float(max_moisture))


class Subscription:
    """Handle returned by :meth:`ThresholdConfigStore.subscribe`."""

    def __init__(self, store: "ThresholdConfigStore", listener: ThresholdListener) -> None:
        self._store = store
        self.listener = listener
        self.active = True

    def close(self) -> None:
        if self.active:
            self.active = False
            self._store._remove(self)


class ThresholdConfigStore:
    """Holds the active :class:`ThresholdConfig` and publishes every change.

    Reads never block and always see a fully committed pair. Writers are
    serialised; the last committed update wins. When the backing table is
    unreachable or holds an invalid row, the defaults are served instead.
    """

    def __init__(
        self,
        table: MoistureSettingsTable,
        default: ThresholdConfig = DEFAULT_THRESHOLDS,
    ) -> None:
        self._table = table
        self._default = default
        self._lock = Lock()
        self._subscriptions: List[Subscription] = []
        self._current = self._read_latest()

    def current(self) -> ThresholdConfig:
        return self._current

    def update(self, min_moisture: float, max_moisture: float) -> ThresholdConfig:
        config = validate_thresholds(min_moisture, max_moisture)
        with self._lock:
            # Raises PersistenceError before anything in memory changes.
            self._table.insert(config.min_moisture, config.max_moisture)
            self._commit(config)
        logger.info(
            "Moisture thresholds updated",
            extra={"min_moisture": config.min_moisture, "max_moisture": config.max_moisture},
        )
        return config

    def sync(self) -> bool:
        """Adopt a configuration written by another process; returns whether it changed."""
        with self._lock:
            try:
                changed = self._table.refresh()
            except PersistenceError as exc:
                logger.warning("Threshold refresh failed", extra={"reason": str(exc)})
                return False
            if not changed:
                return False
            config = self._read_latest()
            if config == self._current:
                return False
            self._commit(config)
        logger.info(
            "Moisture thresholds changed externally",
            extra={"min_moisture": config.min_moisture, "max_moisture": config.max_moisture},
        )
        return True

    def subscribe(self, listener: ThresholdListener) -> Subscription:
        """Register ``listener``; it immediately receives the current config.

        The initial delivery happens under the writer lock, so a concurrent
        :meth:`update` cannot reach the listener ahead of the older value.
        """
        subscription = Subscription(self, listener)
        with self._lock:
            self._subscriptions.append(subscription)
            self._deliver(subscription, self._current)
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _read_latest(self) -> ThresholdConfig:
        try:
            record = self._table.latest()
        except PersistenceError as exc:
            logger.warning("Threshold fetch failed, using defaults", extra={"reason": str(exc)})
            return self._default
        if record is None:
            return self._default
        try:
            return validate_thresholds(record.min_moisture, record.max_moisture)
        except ValidationError as exc:
            logger.warning(
                "Rejected persisted thresholds, using defaults",
                extra={
                    "min_moisture": record.min_moisture,
                    "max_moisture": record.max_moisture,
                    "reason": str(exc),
                },
            )
            return self._default

    def _commit(self, config: ThresholdConfig) -> None:
        self._current = config
        for subscription in list(self._subscriptions):
            self._deliver(subscription, config)

    def _deliver(self, subscription: Subscription, config: ThresholdConfig) -> None:
        try:
            subscription.listener(config)
        except TransportError as exc:
            logger.warning("Dropping threshold subscriber", extra={"reason": str(exc)})
            subscription.close()

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
