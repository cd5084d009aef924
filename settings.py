from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_TICK_SECONDS_ENV = "SILO_TICK_SECONDS"
_TREND_WINDOW_ENV = "SILO_TREND_WINDOW"
_TREND_SPACING_ENV = "SILO_TREND_SPACING_MINUTES"
_LOG_INTERVAL_ENV = "SILO_LOG_INTERVAL_MINUTES"
_LOG_SEED_ENV = "SILO_LOG_SEED_ENTRIES"
_ALERT_CAPACITY_ENV = "SILO_ALERT_CAPACITY"
_SIMULATION_ENV = "SILO_SIMULATION_ENABLED"
_SETTINGS_PATH_ENV = "SILO_SETTINGS_PATH"
_LOGSHEET_PATH_ENV = "SILO_LOGSHEET_PATH"
_SETTINGS_POLL_ENV = "SILO_SETTINGS_POLL_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    tick_seconds: float
    trend_window: int
    trend_spacing_minutes: float
    log_interval_minutes: float
    log_seed_entries: int
    alert_capacity: int
    simulation_enabled: bool
    settings_path: Optional[str]
    logsheet_path: Optional[str]
    settings_poll_seconds: float
    log_level: str


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_int(name: str, default: int, minimum: int = 1) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        tick_seconds=_read_positive_float(_TICK_SECONDS_ENV, 3.0),
        trend_window=_read_int(_TREND_WINDOW_ENV, 12),
        trend_spacing_minutes=_read_positive_float(_TREND_SPACING_ENV, 5.0),
        log_interval_minutes=_read_positive_float(_LOG_INTERVAL_ENV, 30.0),
        log_seed_entries=_read_int(_LOG_SEED_ENV, 48, minimum=0),
        alert_capacity=_read_int(_ALERT_CAPACITY_ENV, 5),
        simulation_enabled=_read_bool(_SIMULATION_ENV, True),
        settings_path=_read_optional_env(_SETTINGS_PATH_ENV, "./tmp/moisture_settings.json"),
        logsheet_path=_read_optional_env(_LOGSHEET_PATH_ENV, "./tmp/logsheet.json"),
        settings_poll_seconds=_read_positive_float(_SETTINGS_POLL_ENV, 5.0),
        log_level=_read_log_level("INFO"),
    )
