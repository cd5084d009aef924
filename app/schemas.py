"""Pydantic schemas for the HTTP API layer and persisted rows."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.records import AlertKind

REQUIRED_READING_FIELDS = ("silo1_moisture", "silo1_temp", "silo2_moisture", "silo2_temp")

EXAMPLE_PAYLOAD = {
    "silo1_moisture": 5.5,
    "silo1_temp": 42.0,
    "silo2_moisture": 6.2,
    "silo2_temp": 45.0,
    "device_id": "ESP32_01",
}


class MoistureSettingsRecord(BaseModel):
    """One persisted threshold configuration row."""

    id: str
    min_moisture: float
    max_moisture: float
    created_at: datetime


class LogsheetRecord(BaseModel):
    """Durable logsheet row, written by the simulator or by a device."""

    id: str
    timestamp: datetime
    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float
    device_id: Optional[str] = None


class SensorDataPayload(BaseModel):
    """Combined reading pushed by a device."""

    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float
    device_id: Optional[str] = Field(default=None, max_length=128)


class SensorDataRecord(BaseModel):
    id: str
    timestamp: datetime
    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float


class IngestAlert(BaseModel):
    silo: int
    type: AlertKind
    value: float


class ThresholdsUsed(BaseModel):
    moisture_min: float
    moisture_max: float


class SensorDataResponse(BaseModel):
    """Response returned to a device after its reading was stored."""

    success: bool = True
    message: str = "Data saved successfully"
    data: SensorDataRecord
    alerts: Optional[List[IngestAlert]] = None
    thresholds: ThresholdsUsed


class ThresholdUpdate(BaseModel):
    min_moisture: float
    max_moisture: float


class ThresholdResponse(BaseModel):
    min_moisture: float
    max_moisture: float


class AlertResponse(BaseModel):
    id: str
    silo_id: int
    kind: AlertKind
    sequence: int
    value: float
    timestamp: datetime


class TrendPointResponse(BaseModel):
    label: str
    timestamp: datetime
    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float


class SiloStatus(BaseModel):
    moisture: float
    temperature: float
    last_updated: datetime
    status: str = Field(..., description="high, low or normal against the active thresholds.")


class SnapshotResponse(BaseModel):
    """Everything a dashboard needs to draw one frame."""

    silo1: SiloStatus
    silo2: SiloStatus
    trend: List[TrendPointResponse]
    alerts: List[AlertResponse]
    thresholds: ThresholdResponse


class LogsheetRow(BaseModel):
    timestamp: datetime
    silo1_moisture: float
    silo1_temp: float
    silo2_moisture: float
    silo2_temp: float
    silo1_status: str
    silo2_status: str
