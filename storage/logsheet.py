from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from pydantic import ValidationError as SchemaError

from app.schemas import LogsheetRecord
from models.records import LogEntry
from services.errors import PersistenceError
from settings import get_settings

logger = logging.getLogger(__name__)


class LogsheetTable:
    """Append-only durable logsheet, one JSON document per table."""

    def __init__(self, name: str = "logsheet_entries", persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._rows: List[LogsheetRecord] = []
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def insert(self, entry: LogEntry, device_id: Optional[str] = None) -> LogsheetRecord:
        record = LogsheetRecord(
            id=str(uuid4()),
            timestamp=entry.timestamp,
            silo1_moisture=entry.silo1_moisture,
            silo1_temp=entry.silo1_temp,
            silo2_moisture=entry.silo2_moisture,
            silo2_temp=entry.silo2_temp,
            device_id=device_id,
        )
        with self._lock:
            rows = self._rows + [record]
            self._persist(rows)
            self._rows = rows
        logger.debug("Logsheet row stored", extra={"entry_id": record.id, "device_id": device_id})
        return record.model_copy()

    def scan(self) -> list[LogsheetRecord]:
        with self._lock:
            return [row.model_copy() for row in self._rows]

    def _persist(self, rows: List[LogsheetRecord]) -> None:
        if not self.persistence_path:
            return
        payload = [row.model_dump(mode="json") for row in rows]
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2))
        except OSError as exc:
            raise PersistenceError(f"Failed to write {self.persistence_path}: {exc}") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable logsheet, starting empty", extra={"reason": str(exc)})
            data = []

        for payload in data if isinstance(data, list) else []:
            try:
                self._rows.append(LogsheetRecord.model_validate(payload))
            except SchemaError as exc:
                logger.warning("Skipping malformed logsheet row", extra={"reason": str(exc)})


@lru_cache
def build_default_logsheet(path: Optional[str] = None) -> LogsheetTable:
    settings = get_settings()
    table_path = settings.logsheet_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return LogsheetTable(persistence_path=persistence)
