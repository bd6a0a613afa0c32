from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from pydantic import ValidationError

from app.schemas import SortOrder, TelemetrySample
from models.records import TelemetryReading
from services.errors import PersistenceError
from settings import get_settings

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = frozenset(TelemetrySample.model_fields)


class AppendTicket:
    """Settles once whether a queued append writes or is abandoned by its caller."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._outcome: Optional[str] = None

    def claim(self) -> bool:
        with self._lock:
            if self._outcome is None:
                self._outcome = "claimed"
            return self._outcome == "claimed"

    def abandon(self) -> bool:
        with self._lock:
            if self._outcome is None:
                self._outcome = "abandoned"
            return self._outcome == "abandoned"


class TelemetryStore:
    """Append-only sample store, optionally mirrored to a JSON-lines file."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._samples: List[TelemetrySample] = []
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def append(
        self,
        reading: TelemetryReading,
        ticket: Optional[AppendTicket] = None,
    ) -> TelemetrySample:
        sample = TelemetrySample(
            id=uuid4().hex,
            recorded_at=datetime.now(timezone.utc),
            **reading.as_fields(),
        )
        with self._lock:
            if ticket is not None and not ticket.claim():
                raise PersistenceError(f"Append to store {self.name!r} was abandoned by its caller.")
            self._persist(sample)
            self._samples.append(sample)
        return sample

    def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        sort_by: str = "recorded_at",
        order: SortOrder = SortOrder.desc,
        limit: Optional[int] = None,
    ) -> List[TelemetrySample]:
        """Return samples with ``start <= recorded_at < end``, sorted and truncated."""
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by unknown field {sort_by!r}.")
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative.")

        with self._lock:
            samples = list(self._samples)

        if start is not None:
            samples = [sample for sample in samples if sample.recorded_at >= start]
        if end is not None:
            samples = [sample for sample in samples if sample.recorded_at < end]

        present = [sample for sample in samples if getattr(sample, sort_by) is not None]
        missing = [sample for sample in samples if getattr(sample, sort_by) is None]
        present.sort(key=lambda sample: getattr(sample, sort_by))
        if order is SortOrder.desc:
            # Ties come out newest-appended first.
            present.reverse()
        ordered = present + missing

        if limit is not None:
            ordered = ordered[:limit]
        return ordered

    def latest(self) -> Optional[TelemetrySample]:
        with self._lock:
            return self._samples[-1] if self._samples else None

    def latest_with(self, field: str) -> Optional[TelemetrySample]:
        """Newest sample whose ``field`` was reported."""
        if field not in SORTABLE_FIELDS:
            raise ValueError(f"Unknown sample field {field!r}.")
        with self._lock:
            for sample in reversed(self._samples):
                if getattr(sample, field) is not None:
                    return sample
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def _persist(self, sample: TelemetrySample) -> None:
        if not self.persistence_path:
            return
        line = sample.model_dump_json(by_alias=True)
        try:
            with self.persistence_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            raise PersistenceError(
                f"Could not append to store {self.name!r}: {exc}"
            ) from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        with self.persistence_path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    self._samples.append(TelemetrySample.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning(
                        "Skipping unreadable stored sample on line %s of %s",
                        line_number,
                        self.persistence_path,
                        extra={"reason": "corrupt line"},
                    )


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> TelemetryStore:
    settings = get_settings()
    store_name = settings.store_name if name is None else name
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return TelemetryStore(name=store_name, persistence_path=persistence)
