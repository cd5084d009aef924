from __future__ import annotations

from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.pushed: List[tuple] = []
        self.threshold_updates: List[tuple] = []
        self.logsheet_calls: List[tuple] = []
        self.closed = False
        self.push_alerts: List[Dict[str, Any]] | None = None

    def push_reading(self, silo1_moisture, silo1_temp, silo2_moisture, silo2_temp, device_id=None) -> Dict[str, Any]:
        self.pushed.append((silo1_moisture, silo1_temp, silo2_moisture, silo2_temp))
        return {
            "success": True,
            "data": {
                "id": "row-1",
                "timestamp": "2024-01-01T00:00:00Z",
                "silo1_moisture": silo1_moisture,
                "silo1_temp": silo1_temp,
                "silo2_moisture": silo2_moisture,
                "silo2_temp": silo2_temp,
            },
            "alerts": self.push_alerts,
            "thresholds": {"moisture_min": 4.5, "moisture_max": 7.0},
        }

    def get_snapshot(self) -> Dict[str, Any]:
        return {
            "silo1": {"moisture": 7.5, "temperature": 42.0, "last_updated": "2024-01-01T00:00:00Z", "status": "high"},
            "silo2": {"moisture": 6.2, "temperature": 45.0, "last_updated": "2024-01-01T00:00:00Z", "status": "normal"},
            "trend": [],
            "alerts": [
                {
                    "id": "1-high-3",
                    "silo_id": 1,
                    "kind": "high",
                    "sequence": 3,
                    "value": 7.5,
                    "timestamp": "2024-01-01T00:00:00Z",
                }
            ],
            "thresholds": {"min_moisture": 4.5, "max_moisture": 7.0},
        }

    def get_thresholds(self) -> Dict[str, Any]:
        return {"min_moisture": 4.5, "max_moisture": 7.0}

    def set_thresholds(self, min_moisture: float, max_moisture: float) -> Dict[str, Any]:
        self.threshold_updates.append((min_moisture, max_moisture))
        return {"min_moisture": min_moisture, "max_moisture": max_moisture}

    def get_logsheet(self, start=None, end=None) -> List[Dict[str, Any]]:
        self.logsheet_calls.append((start, end))
        return [
            {
                "timestamp": "2024-01-02T00:00:00Z",
                "silo1_moisture": 5.5,
                "silo1_temp": 42.0,
                "silo2_moisture": 6.0,
                "silo2_temp": 45.0,
                "silo1_status": "normal",
                "silo2_status": "normal",
            }
        ]

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_push_reading(runner: CliRunner, stub: StubClient) -> None:
    stub.push_alerts = [{"silo": 1, "type": "high", "value": 7.5}]

    result = runner.invoke(
        app,
        ["push", "--silo1-moisture", "7.5", "--silo1-temp", "42", "--silo2-moisture", "6.2", "--silo2-temp", "45"],
    )

    assert result.exit_code == 0
    assert "Reading Stored" in result.stdout
    assert "silo 1 high moisture 7.5" in result.stdout
    assert stub.pushed == [(7.5, 42.0, 6.2, 45.0)]
    assert stub.closed is True


def test_snapshot_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["snapshot"])

    assert result.exit_code == 0
    assert "silo1: moisture 7.50%" in result.stdout
    assert "1-high-3" in result.stdout
    assert "min_moisture: 4.5" in result.stdout


def test_thresholds_set_and_show(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["thresholds", "set", "4", "8"])

    assert result.exit_code == 0
    assert stub.threshold_updates == [(4.0, 8.0)]
    assert "Thresholds saved." in result.stdout

    shown = runner.invoke(app, ["thresholds", "show"])
    assert "max_moisture: 7.0" in shown.stdout


def test_logsheet_command_passes_dates(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["logsheet", "--start", "2024-01-02", "--end", "2024-01-03"])

    assert result.exit_code == 0
    assert "1 entries" in result.stdout
    (start, end), = stub.logsheet_calls
    assert (start.isoformat(), end.isoformat()) == ("2024-01-02", "2024-01-03")


def test_simulate_device_sends_bounded_readings(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["simulate-device", "--count", "5", "--interval", "0", "--seed", "1"])

    assert result.exit_code == 0
    assert len(stub.pushed) == 5
    for silo1_moisture, silo1_temp, silo2_moisture, silo2_temp in stub.pushed:
        assert 3.0 <= silo1_moisture <= 9.0
        assert 35.0 <= silo2_temp <= 55.0


def test_global_options_reach_client(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["--base-url", "http://silo.local:9000/", "--device-id", "ESP32_07", "snapshot"])

    assert result.exit_code == 0
    assert stub.config.base_url == "http://silo.local:9000"
    assert stub.config.device_id == "ESP32_07"


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://env-host:8080/")
    monkeypatch.setenv("CLI_TIMEOUT", "not-a-number")

    config = load_config()

    assert config.base_url == "http://env-host:8080"
    assert config.timeout == 10.0
    assert config.device_id is None
