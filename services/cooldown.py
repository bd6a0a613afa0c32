"""Per-kind alert rate limiting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, Hashable, List, Optional, Union


@dataclass
class CooldownEntry:
    kind: Hashable
    last_fired_at: datetime


class CooldownRegistry:
    """Decides whether a fired rule may become an observable alert.

    Entries are created on the first admission of a kind and updated on every
    later admission. They live for the lifetime of the registry.
    """

    def __init__(self, window: Union[timedelta, float]) -> None:
        if not isinstance(window, timedelta):
            window = timedelta(seconds=window)
        if window < timedelta(0):
            raise ValueError("Cooldown window must not be negative.")
        self.window = window
        self._entries: Dict[Hashable, CooldownEntry] = {}
        self._lock = Lock()

    def admit(self, kind: Hashable, now: datetime) -> bool:
        with self._lock:
            entry = self._entries.get(kind)
            if entry is None:
                self._entries[kind] = CooldownEntry(kind=kind, last_fired_at=now)
                return True
            if now - entry.last_fired_at >= self.window:
                entry.last_fired_at = now
                return True
            return False

    def last_fired(self, kind: Hashable) -> Optional[datetime]:
        with self._lock:
            entry = self._entries.get(kind)
            return entry.last_fired_at if entry else None

    def snapshot(self) -> List[CooldownEntry]:
        with self._lock:
            return [
                CooldownEntry(kind=entry.kind, last_fired_at=entry.last_fired_at)
                for entry in self._entries.values()
            ]
