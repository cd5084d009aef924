from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import List, Optional, Tuple
from uuid import uuid4

from pydantic import ValidationError as SchemaError

from app.schemas import MoistureSettingsRecord
from services.errors import PersistenceError
from settings import get_settings

logger = logging.getLogger(__name__)


class MoistureSettingsTable:
    """Threshold rows persisted as a JSON list; the newest row is authoritative.

    Other processes may write the same file, :meth:`refresh` picks their rows up.
    """

    def __init__(self, name: str = "moisture_settings", persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._rows: List[MoistureSettingsRecord] = []
        self.persistence_path = persistence_path
        self._signature: Optional[Tuple[int, int]] = None
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert(self, min_moisture: float, max_moisture: float) -> MoistureSettingsRecord:
        record = MoistureSettingsRecord(
            id=str(uuid4()),
            min_moisture=min_moisture,
            max_moisture=max_moisture,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            rows = self._rows + [record]
            self._persist(rows)
            self._rows = rows
        return record.model_copy()

    def latest(self) -> Optional[MoistureSettingsRecord]:
        with self._lock:
            if not self._rows:
                return None
            # max() keeps the first of equal keys, so ties go to the later index.
            indexed = max(
                enumerate(self._rows), key=lambda pair: (pair[1].created_at, pair[0])
            )
            return indexed[1].model_copy()

    def scan(self) -> list[MoistureSettingsRecord]:
        with self._lock:
            return [row.model_copy() for row in self._rows]

    def refresh(self) -> bool:
        """Reload rows if the file changed on disk; returns whether it did."""
        if not self.persistence_path:
            return False
        with self._lock:
            if self._current_signature() == self._signature:
                return False
            self._load_from_disk()
            return True

    def _current_signature(self) -> Optional[Tuple[int, int]]:
        assert self.persistence_path is not None
        try:
            stat = self.persistence_path.stat()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Cannot stat {self.persistence_path}: {exc}") from exc
        return (stat.st_mtime_ns, stat.st_size)

    def _persist(self, rows: List[MoistureSettingsRecord]) -> None:
        if not self.persistence_path:
            return
        payload = [row.model_dump(mode="json") for row in rows]
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            raise PersistenceError(f"Failed to write {self.persistence_path}: {exc}") from exc
        self._signature = self._current_signature()

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            self._rows = []
            self._signature = None
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Unreadable settings table, ignoring contents",
                extra={"reason": str(exc)},
            )
            data = []
        if not isinstance(data, list):
            data = []

        rows: List[MoistureSettingsRecord] = []
        for payload in data:
            try:
                rows.append(MoistureSettingsRecord.model_validate(payload))
            except SchemaError as exc:
                logger.warning("Skipping malformed settings row", extra={"reason": str(exc)})
        self._rows = rows
        self._signature = self._current_signature()


@lru_cache
def build_default_settings_table(path: Optional[str] = None) -> MoistureSettingsTable:
    settings = get_settings()
    table_path = settings.settings_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return MoistureSettingsTable(persistence_path=persistence)
