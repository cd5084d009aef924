from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the silo monitor service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def push_reading(
        self,
        silo1_moisture: float,
        silo1_temp: float,
        silo2_moisture: float,
        silo2_temp: float,
        device_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "silo1_moisture": silo1_moisture,
            "silo1_temp": silo1_temp,
            "silo2_moisture": silo2_moisture,
            "silo2_temp": silo2_temp,
        }
        device = device_id or self._config.device_id
        if device:
            payload["device_id"] = device
        return self._request("POST", "/sensor-data", json=payload)

    def get_snapshot(self) -> Dict[str, Any]:
        return self._request("GET", "/snapshot")

    def get_thresholds(self) -> Dict[str, Any]:
        return self._request("GET", "/thresholds")

    def set_thresholds(self, min_moisture: float, max_moisture: float) -> Dict[str, Any]:
        return self._request(
            "PUT",
            "/thresholds",
            json={"min_moisture": min_moisture, "max_moisture": max_moisture},
        )

    def get_logsheet(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Dict[str, Any]]:
        params = {}
        if start is not None:
            params["start"] = start.isoformat()
        if end is not None:
            params["end"] = end.isoformat()
        return self._request("GET", "/logsheet", params=params)

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Cannot reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail") or data.get("error")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
