"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import CooldownState, DustReading, SamplesResponse, SortOrder, TelemetrySample
from datastore.telemetry_store import SORTABLE_FIELDS
from services.pipeline import TelemetryService, build_default_service

router = APIRouter()

_CAMEL_SORT_FIELDS = {
    TelemetrySample.model_fields[name].alias or name: name for name in SORTABLE_FIELDS
}


def get_service() -> TelemetryService:
    return build_default_service()


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _resolve_sort_field(sort_by: Optional[str]) -> str:
    if not sort_by:
        return "recorded_at"
    if sort_by == "createdAt":
        return "recorded_at"
    if sort_by in SORTABLE_FIELDS:
        return sort_by
    if sort_by in _CAMEL_SORT_FIELDS:
        return _CAMEL_SORT_FIELDS[sort_by]
    raise ValueError(f"Cannot sort by unknown field {sort_by!r}.")


@router.get(
    "/api/data",
    response_model=SamplesResponse,
    summary="List stored samples, optionally filtered by day range.",
)
async def list_samples(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate", description="Inclusive."),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    order: SortOrder = Query(SortOrder.desc),
    limit: Optional[int] = Query(None, ge=1, le=10000),
    service: TelemetryService = Depends(get_service),
) -> SamplesResponse:
    start = _start_of(start_date) if start_date else None
    end = _start_of(end_date + timedelta(days=1)) if end_date else None
    try:
        field = _resolve_sort_field(sort_by)
        samples = service.store.query(start=start, end=end, sort_by=field, order=order, limit=limit)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return SamplesResponse(count=len(samples), data=samples)


@router.get(
    "/api/data/latest",
    response_model=TelemetrySample,
    summary="Fetch the most recently stored sample.",
)
async def latest_sample(
    service: TelemetryService = Depends(get_service),
) -> TelemetrySample:
    sample = service.store.latest()
    if sample is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No samples have been recorded yet.",
        )
    return sample


@router.get(
    "/api/data/dust",
    response_model=DustReading,
    summary="Fetch the most recent dust reading.",
)
async def latest_dust_reading(
    service: TelemetryService = Depends(get_service),
) -> DustReading:
    sample = service.store.latest_with("dust_density")
    if sample is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No dust readings have been recorded yet.",
        )
    return DustReading(
        sample_id=sample.id,
        recorded_at=sample.recorded_at,
        dust_density=sample.dust_density,
        dust_voltage=sample.dust_voltage,
    )


@router.get(
    "/api/alerts/cooldowns",
    response_model=List[CooldownState],
    summary="Show when each alert kind last fired.",
)
async def alert_cooldowns(
    service: TelemetryService = Depends(get_service),
) -> List[CooldownState]:
    entries = service.engine.cooldowns.snapshot()
    return [
        CooldownState(kind=getattr(entry.kind, "value", str(entry.kind)), last_fired_at=entry.last_fired_at)
        for entry in sorted(entries, key=lambda entry: entry.last_fired_at, reverse=True)
    ]


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(
    service: TelemetryService = Depends(get_service),
) -> dict[str, object]:
    return {
        "status": "ok",
        "device_connected": service.device_session is not None,
        "observers": service.hub.observer_count,
    }


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "Solaris server is live. See /health for service status."}
