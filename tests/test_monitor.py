import asyncio
import random
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from datastore.moisture_settings import MoistureSettingsTable
from models.records import AlertKey, AlertKind, LogEntry, SensorSample, SiloPair, ThresholdConfig
from services.alert_engine import AlertEngine
from services.errors import PersistenceError, TransportError
from services.log_store import LOG_INTERVAL, LogStore
from services.monitor import MonitorEngine, restore_log_entries
from services.sample_source import SampleSource
from services.threshold_store import ThresholdConfigStore
from services.trend_buffer import TrendBuffer, synthetic_trend
from storage.logsheet import LogsheetTable

T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def _pair(m1: float, m2: float, when: datetime) -> SiloPair:
    return SiloPair(
        silo1=SensorSample(silo_id=1, moisture=m1, temperature=42.0, timestamp=when),
        silo2=SensorSample(silo_id=2, moisture=m2, temperature=45.0, timestamp=when),
    )


class ScriptedSource:
    """Returns queued moisture pairs; ``None`` entries simulate a sensor fault."""

    def __init__(self, script: List[Optional[tuple]]) -> None:
        self.script = list(script)

    def simulate_pair(self, now: datetime) -> SiloPair:
        step = self.script.pop(0)
        if step is None:
            raise RuntimeError("sensor bus timeout")
        return _pair(step[0], step[1], now)


class FailingLogsheet(LogsheetTable):
    def insert(self, entry, device_id=None):
        raise PersistenceError("database offline")


def _engine(source=None, logsheet=None, settings_table=None, **kwargs) -> MonitorEngine:
    return MonitorEngine(
        source=source or SampleSource(rng=random.Random(0)),
        trend=TrendBuffer(synthetic_trend(12, T0, timedelta(minutes=5), rng=random.Random(0))),
        log_store=LogStore(),
        alerts=AlertEngine(),
        thresholds=ThresholdConfigStore(settings_table or MoistureSettingsTable()),
        logsheet=logsheet if logsheet is not None else LogsheetTable(),
        simulate=kwargs.pop("simulate", False),
        settings_poll_seconds=kwargs.pop("settings_poll_seconds", 3600.0),
        clock=lambda: T0,
        **kwargs,
    )


def _run(engine: MonitorEngine, scenario):
    async def wrapper():
        await engine.start()
        try:
            return await scenario()
        finally:
            await engine.stop()

    return asyncio.run(wrapper())


def test_tick_runs_full_pipeline() -> None:
    engine = _engine(source=ScriptedSource([(7.5, 5.0)]))

    snapshot = _run(engine, lambda: engine.tick(T0))

    assert snapshot is not None
    assert len(snapshot.trend) == 12
    assert snapshot.trend[-1].silo1_moisture == 7.5
    assert snapshot.latest.silo1.moisture == 7.5
    assert [(alert.silo_id, alert.kind) for alert in snapshot.alerts] == [(1, AlertKind.high)]
    assert len(engine.log_store) == 1
    assert len(engine.logsheet) == 1


def test_ticks_gate_logsheet_and_keep_trend_length() -> None:
    script = [(5.5, 6.0)] * 7
    engine = _engine(source=ScriptedSource(script))

    async def scenario():
        for minute in range(0, 70, 10):
            await engine.tick(T0 + timedelta(minutes=minute))

    _run(engine, scenario)

    stamps = [entry.timestamp for entry in engine.log_entries()]
    assert stamps == [T0, T0 + timedelta(minutes=30), T0 + timedelta(minutes=60)]
    assert len(engine.trend) == 12
    assert len(engine.logsheet) == 3


def test_failed_sample_generation_skips_tick() -> None:
    engine = _engine(source=ScriptedSource([None, (5.5, 6.0)]))
    before = engine.trend.snapshot()

    async def scenario():
        skipped = await engine.tick(T0)
        assert engine.trend.snapshot() == before
        return skipped, await engine.tick(T0 + timedelta(seconds=3))

    skipped, applied = _run(engine, scenario)

    assert skipped is None
    assert applied is not None
    assert applied.trend[-1].silo1_moisture == 5.5


def test_durable_write_failure_keeps_live_state() -> None:
    engine = _engine(source=ScriptedSource([(3.9, 6.0)]), logsheet=FailingLogsheet())

    snapshot = _run(engine, lambda: engine.tick(T0))

    assert snapshot is not None
    assert len(engine.log_store) == 1
    assert [alert.kind for alert in snapshot.alerts] == [AlertKind.low]


def test_ingest_reading_persists_and_reports_alerts() -> None:
    engine = _engine()

    result = _run(engine, lambda: engine.ingest_reading(_pair(7.5, 3.9, T0), device_id="ESP32_01"))

    assert result.record.device_id == "ESP32_01"
    assert result.thresholds == ThresholdConfig(4.5, 7.0)
    assert [(alert.silo_id, alert.kind, alert.value) for alert in result.alerts] == [
        (1, AlertKind.high, 7.5),
        (2, AlertKind.low, 3.9),
    ]
    assert len(engine.logsheet) == 1
    assert engine.snapshot.trend[-1].silo2_moisture == 3.9


def test_ingest_reading_persistence_failure_changes_nothing() -> None:
    engine = _engine(logsheet=FailingLogsheet())
    before = engine.trend.snapshot()

    async def scenario():
        with pytest.raises(PersistenceError):
            await engine.ingest_reading(_pair(7.5, 6.0, T0))

    _run(engine, scenario)

    assert engine.trend.snapshot() == before
    assert engine.snapshot.alerts == ()


class SlowFirstLogsheet(LogsheetTable):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def insert(self, entry, device_id=None):
        self.calls += 1
        if self.calls == 1:
            time.sleep(0.2)
        return super().insert(entry, device_id)


def test_concurrent_readings_are_applied_in_acceptance_order() -> None:
    engine = _engine(logsheet=SlowFirstLogsheet())
    first = _pair(5.1, 6.1, T0)
    second = _pair(5.2, 6.2, T0 + timedelta(seconds=1))

    async def scenario():
        await asyncio.gather(
            engine.ingest_reading(first, device_id="first"),
            engine.ingest_reading(second, device_id="second"),
        )

    _run(engine, scenario)

    assert [row.device_id for row in engine.logsheet.scan()] == ["first", "second"]
    assert [point.silo1_moisture for point in engine.snapshot.trend[-2:]] == [5.1, 5.2]
    assert engine.snapshot.latest == second


def test_ingest_reading_requires_running_engine() -> None:
    engine = _engine()

    with pytest.raises(RuntimeError):
        asyncio.run(engine.ingest_reading(_pair(5.0, 6.0, T0)))

    assert len(engine.logsheet) == 0


def test_dismiss_goes_through_engine() -> None:
    engine = _engine()

    async def scenario():
        alerts = await engine.ingest(_pair(8.0, 8.0, T0))
        assert await engine.dismiss(alerts[0].key) is True
        assert await engine.dismiss(AlertKey(1, AlertKind.low, 42)) is False
        return alerts

    alerts = _run(engine, scenario)

    assert engine.snapshot.alerts == (alerts[1],)


def test_threshold_update_is_used_for_next_evaluation() -> None:
    engine = _engine()

    async def scenario():
        await asyncio.to_thread(engine.thresholds.update, 4.0, 8.0)
        alerts = await engine.ingest(_pair(7.5, 6.0, T0))
        return alerts

    alerts = _run(engine, scenario)

    assert alerts == ()
    assert engine.snapshot.thresholds == ThresholdConfig(4.0, 8.0)


def test_external_threshold_change_reaches_snapshot(tmp_path) -> None:
    path = tmp_path / "settings.json"
    engine = _engine(
        settings_table=MoistureSettingsTable(persistence_path=path),
        settings_poll_seconds=0.01,
    )

    async def scenario():
        MoistureSettingsTable(persistence_path=path).insert(3.0, 9.0)
        for _ in range(200):
            if engine.snapshot.thresholds == ThresholdConfig(3.0, 9.0):
                break
            await asyncio.sleep(0.01)

    _run(engine, scenario)

    assert engine.thresholds.current() == ThresholdConfig(3.0, 9.0)
    assert engine.snapshot.thresholds == ThresholdConfig(3.0, 9.0)


def test_snapshot_subscribers() -> None:
    engine = _engine(source=ScriptedSource([(5.5, 6.0), (5.6, 6.1)]))
    received = []
    failures = []

    def flaky(snapshot) -> None:
        failures.append(snapshot)
        raise TransportError("client went away")

    engine.subscribe(received.append)
    engine.subscribe(flaky)

    async def scenario():
        await engine.tick(T0)
        await engine.tick(T0 + timedelta(seconds=3))

    _run(engine, scenario)

    assert len(failures) == 1
    assert received[0].latest.silo1.moisture == 5.8
    assert [snap.latest.silo1.moisture for snap in received[-2:]] == [5.5, 5.6]


def test_requests_require_running_engine() -> None:
    engine = _engine()

    with pytest.raises(RuntimeError):
        asyncio.run(engine.tick(T0))


def test_timer_drives_ticks_until_stopped() -> None:
    engine = _engine(simulate=True, tick_seconds=0.01)
    first = engine.trend.snapshot()[-1]

    async def scenario():
        for _ in range(200):
            if engine.snapshot.trend[-1] != first:
                break
            await asyncio.sleep(0.01)

    _run(engine, scenario)

    assert engine.running is False
    assert engine.snapshot.trend[-1] != first


def test_restore_log_entries_respects_interval() -> None:
    table = LogsheetTable()
    for minutes in (0, 10, 30, 45, 61):
        table.insert(
            LogEntry(
                timestamp=T0 + timedelta(minutes=minutes),
                silo1_moisture=5.0,
                silo1_temp=42.0,
                silo2_moisture=6.0,
                silo2_temp=45.0,
            )
        )

    entries = restore_log_entries(table.scan(), LOG_INTERVAL)

    assert [entry.timestamp - T0 for entry in entries] == [
        timedelta(0),
        timedelta(minutes=30),
        timedelta(minutes=61),
    ]
