"""Tick-driven monitoring engine.

A single consumer task owns the trend window, the logsheet and the alert set.
Timer ticks, device readings, dismissals and threshold changes all reach it as
messages on one queue, so every mutation happens in arrival order on one task.
Durable writes run in worker threads and never hold up the next message.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, List, Optional, Set, Tuple, Union

from app.schemas import LogsheetRecord
from datastore.moisture_settings import build_default_settings_table
from models.records import (
    Alert,
    AlertKey,
    LogEntry,
    SensorSample,
    SiloPair,
    ThresholdConfig,
    TrendPoint,
)
from services.alert_engine import AlertEngine
from services.errors import TransportError
from services.log_store import LogStore, synthetic_logsheet
from services.sample_source import COLD_START, SampleSource
from services.threshold_store import Subscription, ThresholdConfigStore
from services.trend_buffer import TrendBuffer, synthetic_trend
from settings import get_settings
from storage.logsheet import LogsheetTable, build_default_logsheet

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EngineSnapshot:
    """Immutable view published after every applied message."""

    latest: SiloPair
    trend: Tuple[TrendPoint, ...]
    alerts: Tuple[Alert, ...]
    thresholds: ThresholdConfig


@dataclass(frozen=True)
class IngestResult:
    record: LogsheetRecord
    alerts: Tuple[Alert, ...]
    thresholds: ThresholdConfig


@dataclass
class Tick:
    now: datetime
    done: Optional[asyncio.Future] = None


@dataclass
class IngestSample:
    pair: SiloPair
    thresholds: ThresholdConfig
    done: Optional[asyncio.Future] = None


@dataclass
class Dismiss:
    key: AlertKey
    done: Optional[asyncio.Future] = None


@dataclass
class ThresholdsChanged:
    config: ThresholdConfig
    done: Optional[asyncio.Future] = None


@dataclass
class Stop:
    done: Optional[asyncio.Future] = None


Message = Union[Tick, IngestSample, Dismiss, ThresholdsChanged, Stop]
SnapshotListener = Callable[[EngineSnapshot], None]


def _cold_start_pair(now: datetime) -> SiloPair:
    silo1, silo2 = (
        SensorSample(
            silo_id=silo_id,
            moisture=state.moisture,
            temperature=state.temperature,
            timestamp=now,
        )
        for silo_id, state in sorted(COLD_START.items())
    )
    return SiloPair(silo1=silo1, silo2=silo2)


class MonitorEngine:
    """Runs the sample -> trend -> logsheet -> alerts pipeline."""

    def __init__(
        self,
        source: SampleSource,
        trend: TrendBuffer,
        log_store: LogStore,
        alerts: AlertEngine,
        thresholds: ThresholdConfigStore,
        logsheet: LogsheetTable,
        tick_seconds: float = 3.0,
        settings_poll_seconds: float = 5.0,
        simulate: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.source = source
        self.trend = trend
        self.log_store = log_store
        self.alerts = alerts
        self.thresholds = thresholds
        self.logsheet = logsheet
        self.tick_seconds = tick_seconds
        self.settings_poll_seconds = settings_poll_seconds
        self.simulate = simulate
        self._clock = clock

        self._queue: Optional[asyncio.Queue[Message]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._actor: Optional[asyncio.Task[None]] = None
        self._background: List[asyncio.Task[None]] = []
        self._writes: Set[asyncio.Future] = set()
        self._threshold_subscription: Optional[Subscription] = None
        self._ingest_lock: Optional[asyncio.Lock] = None
        self._listeners: List[SnapshotListener] = []
        self._snapshot = EngineSnapshot(
            latest=_cold_start_pair(clock()),
            trend=trend.snapshot(),
            alerts=alerts.outstanding(),
            thresholds=thresholds.current(),
        )

    @property
    def running(self) -> bool:
        return self._actor is not None and not self._actor.done()

    @property
    def snapshot(self) -> EngineSnapshot:
        return self._snapshot

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._ingest_lock = asyncio.Lock()
        self._actor = asyncio.create_task(self._run(), name="monitor-actor")
        self._threshold_subscription = self.thresholds.subscribe(self._on_thresholds)
        if self.simulate:
            self._background.append(asyncio.create_task(self._timer(), name="monitor-timer"))
        self._background.append(
            asyncio.create_task(self._watch_thresholds(), name="monitor-threshold-watch")
        )
        logger.info("Monitor engine started")

    async def stop(self) -> None:
        if self._actor is None:
            return
        assert self._queue is not None
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        if self._threshold_subscription is not None:
            self._threshold_subscription.close()
            self._threshold_subscription = None

        # Messages already queued are applied in full before the actor exits.
        if not self._actor.done():
            await self._queue.put(Stop())
            await self._actor
        elif not self._actor.cancelled() and self._actor.exception() is not None:
            logger.error("Monitor actor had stopped on an error", exc_info=self._actor.exception())
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)
        self._actor = None
        self._queue = None
        self._ingest_lock = None
        self._loop = None
        logger.info("Monitor engine stopped")

    async def tick(self, now: Optional[datetime] = None) -> Optional[EngineSnapshot]:
        """Run one simulated tick; ``None`` means the tick was skipped."""
        return await self._request(Tick(now=now or self._clock()))

    async def ingest(self, pair: SiloPair, thresholds: Optional[ThresholdConfig] = None) -> Tuple[Alert, ...]:
        """Feed an externally produced pair through the pipeline."""
        config = thresholds or self.thresholds.current()
        return await self._request(IngestSample(pair=pair, thresholds=config))

    async def ingest_reading(self, pair: SiloPair, device_id: Optional[str] = None) -> IngestResult:
        """Persist a validated device reading, then evaluate it.

        Raises :class:`PersistenceError` when the row cannot be stored, in which
        case nothing in memory changes.
        """
        if self._ingest_lock is None:
            raise RuntimeError("Monitor engine is not running.")
        # Readings reach the actor in the order they were accepted.
        async with self._ingest_lock:
            thresholds = self.thresholds.current()
            record = await asyncio.to_thread(
                self.logsheet.insert, LogEntry.from_pair(pair), device_id
            )
            alerts = await self.ingest(pair, thresholds)
        logger.info(
            "Device reading stored",
            extra={"device_id": device_id or "unknown", "entry_id": record.id},
        )
        return IngestResult(record=record, alerts=alerts, thresholds=thresholds)

    async def dismiss(self, key: AlertKey) -> bool:
        return await self._request(Dismiss(key=key))

    def log_entries(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> Tuple[LogEntry, ...]:
        return self.log_store.entries(start=start, end=end)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener``; it receives the current snapshot straight away."""
        self._listeners.append(listener)
        self._deliver(listener, self._snapshot)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _request(self, message: Message):
        if not self.running or self._queue is None:
            raise RuntimeError("Monitor engine is not running.")
        message.done = asyncio.get_running_loop().create_future()
        await self._queue.put(message)
        return await message.done

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            message = await self._queue.get()
            if isinstance(message, Stop):
                return
            try:
                result = self._handle(message)
            except Exception as exc:
                if message.done is not None and not message.done.done():
                    message.done.set_exception(exc)
                raise
            if message.done is not None and not message.done.done():
                message.done.set_result(result)

    def _handle(self, message: Message):
        if isinstance(message, Tick):
            return self._on_tick(message.now)
        if isinstance(message, IngestSample):
            return self._apply(message.pair, message.thresholds, persist=False)
        if isinstance(message, Dismiss):
            dismissed = self.alerts.dismiss(message.key)
            self._publish(self._snapshot.latest, self.thresholds.current())
            return dismissed
        if isinstance(message, ThresholdsChanged):
            # The store may have moved on since this message was queued.
            self._publish(self._snapshot.latest, self.thresholds.current())
            return message.config
        raise TypeError(f"Unsupported message {message!r}")

    def _on_tick(self, now: datetime) -> Optional[EngineSnapshot]:
        try:
            pair = self.source.simulate_pair(now)
        except Exception:
            logger.exception("Sample generation failed, skipping tick")
            return None
        self._apply(pair, self.thresholds.current(), persist=True)
        return self._snapshot

    def _apply(self, pair: SiloPair, thresholds: ThresholdConfig, persist: bool) -> Tuple[Alert, ...]:
        self.trend.append(pair)
        entry = self.log_store.maybe_append(pair, pair.timestamp)
        if entry is not None and persist:
            self._dispatch_write(entry)
        raised = tuple(
            alert
            for alert in (self.alerts.evaluate(sample, thresholds) for sample in pair.samples())
            if alert is not None
        )
        self._publish(pair, thresholds)
        return raised

    def _publish(self, latest: SiloPair, thresholds: ThresholdConfig) -> None:
        self._snapshot = EngineSnapshot(
            latest=latest,
            trend=self.trend.snapshot(),
            alerts=self.alerts.outstanding(),
            thresholds=thresholds,
        )
        for listener in list(self._listeners):
            self._deliver(listener, self._snapshot)

    def _deliver(self, listener: SnapshotListener, snapshot: EngineSnapshot) -> None:
        try:
            listener(snapshot)
        except TransportError as exc:
            logger.warning("Dropping snapshot subscriber", extra={"reason": str(exc)})
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _dispatch_write(self, entry: LogEntry) -> None:
        future = asyncio.create_task(asyncio.to_thread(self.logsheet.insert, entry))
        self._writes.add(future)
        future.add_done_callback(self._write_finished)

    def _write_finished(self, future: asyncio.Future) -> None:
        self._writes.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Logsheet write failed", extra={"reason": str(exc)})

    def _on_thresholds(self, config: ThresholdConfig) -> None:
        # Called from whichever thread committed the change.
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, ThresholdsChanged(config=config))

    async def _timer(self) -> None:
        assert self._queue is not None
        while True:
            await asyncio.sleep(self.tick_seconds)
            await self._queue.put(Tick(now=self._clock()))

    async def _watch_thresholds(self) -> None:
        while True:
            await asyncio.sleep(self.settings_poll_seconds)
            await asyncio.to_thread(self.thresholds.sync)


def restore_log_entries(records: List[LogsheetRecord], interval: timedelta) -> List[LogEntry]:
    """Rebuild gated history from durable rows, keeping the interval spacing."""
    entries: List[LogEntry] = []
    for record in sorted(records, key=lambda row: row.timestamp):
        timestamp = record.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        if entries and timestamp - entries[-1].timestamp < interval:
            continue
        entries.append(
            LogEntry(
                timestamp=timestamp,
                silo1_moisture=record.silo1_moisture,
                silo1_temp=record.silo1_temp,
                silo2_moisture=record.silo2_moisture,
                silo2_temp=record.silo2_temp,
            )
        )
    return entries


@lru_cache
def build_default_engine() -> MonitorEngine:
    """Factory that wires the engine with settings-driven stores."""
    settings = get_settings()
    now = utcnow()
    interval = timedelta(minutes=settings.log_interval_minutes)
    logsheet = build_default_logsheet()

    log_store = LogStore(interval=interval)
    history = restore_log_entries(logsheet.scan(), interval)
    if history:
        log_store.seed(history)
    elif settings.log_seed_entries:
        log_store.seed(synthetic_logsheet(settings.log_seed_entries, now, interval))

    trend = TrendBuffer(
        synthetic_trend(
            settings.trend_window, now, timedelta(minutes=settings.trend_spacing_minutes)
        )
    )
    return MonitorEngine(
        source=SampleSource(),
        trend=trend,
        log_store=log_store,
        alerts=AlertEngine(capacity=settings.alert_capacity),
        thresholds=ThresholdConfigStore(build_default_settings_table()),
        logsheet=logsheet,
        tick_seconds=settings.tick_seconds,
        settings_poll_seconds=settings.settings_poll_seconds,
        simulate=settings.simulation_enabled,
    )
