"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True, slots=True)
class TelemetryReading:
    """A decoded device reading that has not been persisted yet."""

    temperature: Optional[float] = None
    humidity: Optional[float] = None
    dust_voltage: Optional[float] = None
    dust_density: Optional[float] = None
    light_raw: Optional[float] = None
    light_percent: Optional[float] = None
    tilt_angle: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    power: Optional[float] = None

    def as_fields(self) -> Dict[str, Any]:
        return asdict(self)
