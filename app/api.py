"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.schemas import (
    EXAMPLE_PAYLOAD,
    REQUIRED_READING_FIELDS,
    AlertResponse,
    IngestAlert,
    LogsheetRow,
    SensorDataPayload,
    SensorDataRecord,
    SensorDataResponse,
    SiloStatus,
    SnapshotResponse,
    ThresholdResponse,
    ThresholdsUsed,
    ThresholdUpdate,
    TrendPointResponse,
)
from models.records import Alert, AlertKey, AlertKind, SensorSample, ThresholdConfig
from services.alert_engine import classify_moisture
from services.errors import PersistenceError, ValidationError
from services.monitor import MonitorEngine, build_default_engine, utcnow
from services.sample_source import SampleSource

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

INGEST_PATH = "/sensor-data"

router = APIRouter()


def get_engine() -> MonitorEngine:
    return build_default_engine()


def _cors_json(status_code: int, content: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


def _json_number(value: Optional[float]) -> Any:
    # JSON has no NaN or Infinity; report those as "nan" / "inf".
    if value is None or math.isfinite(value):
        return value
    return str(value)


def _alert_response(alert: Alert) -> AlertResponse:
    return AlertResponse(
        id=str(alert.key),
        silo_id=alert.silo_id,
        kind=alert.kind,
        sequence=alert.key.sequence,
        value=alert.value,
        timestamp=alert.timestamp,
    )


def _thresholds_response(config: ThresholdConfig) -> ThresholdResponse:
    return ThresholdResponse(min_moisture=config.min_moisture, max_moisture=config.max_moisture)


def _silo_status(sample: SensorSample, thresholds: ThresholdConfig) -> SiloStatus:
    return SiloStatus(
        moisture=sample.moisture,
        temperature=sample.temperature,
        last_updated=sample.timestamp,
        status=classify_moisture(sample.moisture, thresholds),
    )


@router.post(
    INGEST_PATH,
    status_code=status.HTTP_201_CREATED,
    response_model=SensorDataResponse,
    summary="Accept one combined reading for both silos from a device.",
)
async def ingest_sensor_data(
    request: Request,
    engine: MonitorEngine = Depends(get_engine),
) -> JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return _cors_json(
            status.HTTP_400_BAD_REQUEST,
            {"error": "Request body must be a JSON object.", "example": EXAMPLE_PAYLOAD},
        )

    missing = [name for name in REQUIRED_READING_FIELDS if body.get(name) is None]
    if missing:
        return _cors_json(
            status.HTTP_400_BAD_REQUEST,
            {
                "error": "Missing required fields",
                "missing": missing,
                "required": list(REQUIRED_READING_FIELDS),
                "example": EXAMPLE_PAYLOAD,
            },
        )

    try:
        payload = SensorDataPayload.model_validate(body)
    except SchemaError as exc:
        return _cors_json(
            status.HTTP_400_BAD_REQUEST,
            {
                "error": "Invalid field values",
                "details": [
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in exc.errors()
                ],
            },
        )

    try:
        pair = SampleSource.pair_from_readings(
            payload.silo1_moisture,
            payload.silo1_temp,
            payload.silo2_moisture,
            payload.silo2_temp,
            now=utcnow(),
        )
    except ValidationError as exc:
        logger.info("Rejected device reading", extra={"field": exc.field, "value": exc.value})
        return _cors_json(
            status.HTTP_400_BAD_REQUEST,
            {
                "error": str(exc),
                "field": exc.field,
                "min": exc.lower,
                "max": exc.upper,
                "value": _json_number(exc.value),
            },
        )

    try:
        result = await engine.ingest_reading(pair, device_id=payload.device_id)
    except PersistenceError as exc:
        logger.error("Device reading not stored", extra={"reason": str(exc)})
        return _cors_json(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"error": "Failed to save data", "details": str(exc)},
        )

    record = result.record
    alerts = [
        IngestAlert(silo=alert.silo_id, type=alert.kind, value=alert.value)
        for alert in result.alerts
    ]
    response = SensorDataResponse(
        data=SensorDataRecord(
            id=record.id,
            timestamp=record.timestamp,
            silo1_moisture=record.silo1_moisture,
            silo1_temp=record.silo1_temp,
            silo2_moisture=record.silo2_moisture,
            silo2_temp=record.silo2_temp,
        ),
        alerts=alerts or None,
        thresholds=ThresholdsUsed(
            moisture_min=result.thresholds.min_moisture,
            moisture_max=result.thresholds.max_moisture,
        ),
    )
    return _cors_json(status.HTTP_201_CREATED, response.model_dump(mode="json"))


@router.options(INGEST_PATH, include_in_schema=False)
async def sensor_data_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> Response:
    """Answer any unsupported method on the ingestion route with a CORS 405."""
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED and request.url.path == INGEST_PATH:
        response = _cors_json(
            status.HTTP_405_METHOD_NOT_ALLOWED,
            {"error": "Method not allowed. Use POST."},
        )
        response.headers["Allow"] = "POST, OPTIONS"
        return response
    return await http_exception_handler(request, exc)


@router.get(
    "/snapshot",
    response_model=SnapshotResponse,
    summary="Latest readings, trend window, outstanding alerts and thresholds.",
)
async def get_snapshot(engine: MonitorEngine = Depends(get_engine)) -> SnapshotResponse:
    snapshot = engine.snapshot
    thresholds = snapshot.thresholds
    return SnapshotResponse(
        silo1=_silo_status(snapshot.latest.silo1, thresholds),
        silo2=_silo_status(snapshot.latest.silo2, thresholds),
        trend=[
            TrendPointResponse(
                label=point.label,
                timestamp=point.timestamp,
                silo1_moisture=point.silo1_moisture,
                silo1_temp=point.silo1_temp,
                silo2_moisture=point.silo2_moisture,
                silo2_temp=point.silo2_temp,
            )
            for point in snapshot.trend
        ],
        alerts=[_alert_response(alert) for alert in snapshot.alerts],
        thresholds=_thresholds_response(thresholds),
    )


@router.get("/alerts", response_model=List[AlertResponse], summary="Outstanding alerts, oldest first.")
async def list_alerts(engine: MonitorEngine = Depends(get_engine)) -> List[AlertResponse]:
    return [_alert_response(alert) for alert in engine.snapshot.alerts]


@router.delete(
    "/alerts/{silo_id}/{kind}/{sequence}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Dismiss an alert; unknown alerts are ignored.",
)
async def dismiss_alert(
    silo_id: int,
    kind: AlertKind,
    sequence: int,
    engine: MonitorEngine = Depends(get_engine),
) -> Response:
    await engine.dismiss(AlertKey(silo_id=silo_id, kind=kind, sequence=sequence))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/thresholds", response_model=ThresholdResponse, summary="Active moisture band.")
def get_thresholds(engine: MonitorEngine = Depends(get_engine)) -> ThresholdResponse:
    return _thresholds_response(engine.thresholds.current())


@router.put("/thresholds", response_model=ThresholdResponse, summary="Replace the moisture band.")
def update_thresholds(
    update: ThresholdUpdate,
    engine: MonitorEngine = Depends(get_engine),
) -> ThresholdResponse:
    try:
        config = engine.thresholds.update(update.min_moisture, update.max_moisture)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Thresholds not saved: {exc}",
        ) from exc
    return _thresholds_response(config)


@router.get(
    "/logsheet",
    response_model=List[LogsheetRow],
    summary="Logsheet entries, optionally limited to whole days.",
)
async def get_logsheet(
    start: Optional[date] = Query(None, description="First day to include (YYYY-MM-DD)."),
    end: Optional[date] = Query(None, description="Last day to include (YYYY-MM-DD)."),
    engine: MonitorEngine = Depends(get_engine),
) -> List[LogsheetRow]:
    if start and end and start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end.",
        )
    thresholds = engine.thresholds.current()
    return [
        LogsheetRow(
            timestamp=entry.timestamp,
            silo1_moisture=entry.silo1_moisture,
            silo1_temp=entry.silo1_temp,
            silo2_moisture=entry.silo2_moisture,
            silo2_temp=entry.silo2_temp,
            silo1_status=classify_moisture(entry.silo1_moisture, thresholds),
            silo2_status=classify_moisture(entry.silo2_moisture, thresholds),
        )
        for entry in engine.log_entries(start=start, end=end)
    ]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(engine: MonitorEngine = Depends(get_engine)) -> dict[str, str]:
    return {"status": "ok" if engine.running else "stopped"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
