from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from datastore.moisture_settings import build_default_settings_table
from models.records import LogEntry
from services.monitor import build_default_engine
from settings import get_settings
from storage.logsheet import LogsheetTable, build_default_logsheet


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


CACHES = (
    get_settings,
    build_default_settings_table,
    build_default_logsheet,
    build_default_engine,
)


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    settings_path = tmp_path / "settings.json"
    logsheet_path = tmp_path / "logsheet.json"

    monkeypatch.setenv("SILO_SETTINGS_PATH", str(settings_path))
    monkeypatch.setenv("SILO_LOGSHEET_PATH", str(logsheet_path))
    monkeypatch.setenv("SILO_TREND_WINDOW", "6")
    monkeypatch.setenv("SILO_ALERT_CAPACITY", "3")
    monkeypatch.setenv("SILO_TICK_SECONDS", "1.5")
    monkeypatch.setenv("SILO_LOG_SEED_ENTRIES", "10")
    monkeypatch.setenv("SILO_SIMULATION_ENABLED", "off")
    _clear_caches(CACHES)

    try:
        engine = build_default_engine()

        assert len(engine.trend) == 6
        assert engine.alerts.capacity == 3
        assert engine.tick_seconds == 1.5
        assert engine.simulate is False
        assert len(engine.log_store) == 10
        assert build_default_settings_table().persistence_path == settings_path
        assert engine.logsheet.persistence_path == logsheet_path
    finally:
        _clear_caches(CACHES)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("SILO_TREND_WINDOW", "zero")
    monkeypatch.setenv("SILO_TICK_SECONDS", "-3")
    monkeypatch.setenv("SILO_SIMULATION_ENABLED", "maybe")
    monkeypatch.setenv("LOG_LEVEL", " debug ")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.trend_window == 12
        assert settings.tick_seconds == 3.0
        assert settings.simulation_enabled is True
        assert settings.log_interval_minutes == 30.0
        assert settings.alert_capacity == 5
        assert settings.log_level == "DEBUG"
    finally:
        get_settings.cache_clear()


def test_empty_paths_keep_tables_in_memory(monkeypatch) -> None:
    monkeypatch.setenv("SILO_SETTINGS_PATH", "")
    monkeypatch.setenv("SILO_LOGSHEET_PATH", " ")
    _clear_caches(CACHES)

    try:
        assert build_default_settings_table().persistence_path is None
        assert build_default_logsheet().persistence_path is None
    finally:
        _clear_caches(CACHES)


def test_engine_restores_history_from_durable_logsheet(monkeypatch, tmp_path) -> None:
    logsheet_path = tmp_path / "logsheet.json"
    table = LogsheetTable(persistence_path=logsheet_path)
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for index in range(4):
        table.insert(
            LogEntry(
                timestamp=start + timedelta(minutes=30 * index),
                silo1_moisture=5.0,
                silo1_temp=42.0,
                silo2_moisture=6.0,
                silo2_temp=45.0,
            )
        )
    monkeypatch.setenv("SILO_SETTINGS_PATH", "")
    monkeypatch.setenv("SILO_LOGSHEET_PATH", str(logsheet_path))
    _clear_caches(CACHES)

    try:
        engine = build_default_engine()
        assert len(engine.log_store) == 4
        assert engine.log_store.last_log_time == start + timedelta(minutes=90)
    finally:
        _clear_caches(CACHES)
