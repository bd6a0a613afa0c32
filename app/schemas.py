"""Pydantic schemas for persisted samples, broadcast events and the HTTP API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TelemetrySample(_CamelModel):
    """A telemetry reading as persisted by the store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    recorded_at: datetime
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    dust_voltage: Optional[float] = None
    dust_density: Optional[float] = None
    light_raw: Optional[float] = None
    light_percent: Optional[float] = Field(default=None, ge=0, le=100)
    tilt_angle: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    power: Optional[float] = None


class AlertKind(str, Enum):
    """Alert categories. New rules add members here."""

    DUST = "DUST"
    LOW_POWER = "LOW_POWER"
    OVERHEAT = "OVERHEAT"
    EFFICIENCY_DROP = "EFFICIENCY_DROP"


class AlertSeverity(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertCandidate(_CamelModel):
    """One rule firing for one sample."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    kind: AlertKind
    severity: AlertSeverity
    message: str
    context: Dict[str, Union[float, str]] = Field(default_factory=dict)
    generated_at: datetime


class EventType(str, Enum):
    new_sample = "new-sample"
    alert = "alert"


class BroadcastEvent(BaseModel):
    """Envelope delivered to every observer."""

    type: EventType
    data: Dict[str, Any]

    @classmethod
    def new_sample(cls, sample: TelemetrySample) -> "BroadcastEvent":
        return cls(type=EventType.new_sample, data=sample.model_dump(mode="json", by_alias=True))

    @classmethod
    def alert(cls, candidate: AlertCandidate) -> "BroadcastEvent":
        return cls(type=EventType.alert, data=candidate.model_dump(mode="json", by_alias=True))


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class SamplesResponse(BaseModel):
    """Response body for sample history queries."""

    success: bool = True
    count: int = Field(..., ge=0)
    data: List[TelemetrySample] = Field(default_factory=list)


class CooldownState(_CamelModel):
    kind: str
    last_fired_at: datetime


class DustReading(_CamelModel):
    """Most recent dust measurement."""

    sample_id: str
    recorded_at: datetime
    dust_density: float
    dust_voltage: Optional[float] = None
