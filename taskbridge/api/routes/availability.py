"""
Availability API Routes
=======================

Routes:
  PUT    /api/v1/providers/{provider_id}/schedule   -- Replace weekly template, regenerate slots
  GET    /api/v1/providers/{provider_id}/schedule   -- Calendar view (slots + bookings)
  GET    /api/v1/providers/{provider_id}/slots      -- Time slots in a date range
  GET    /api/v1/availability/providers             -- Providers free for a window
"""

from __future__ import annotations

import uuid
from datetime import date, time, timedelta
from typing import Optional

from fastapi import APIRouter, Query

from taskbridge.api.deps import DBSession
from taskbridge.api.errors import http_error
from taskbridge.api.schemas.scheduling import (
    AvailableProviderOut,
    BookingOut,
    ProviderScheduleOut,
    RegenerationSummaryOut,
    TimeSlotOut,
    WeeklyScheduleRequest,
)
from taskbridge.core.config import settings
from taskbridge.core.errors import TaskBridgeError, ValidationFailure
from taskbridge.services import availabilityService
from taskbridge.services.availabilityService import WeeklyScheduleEntry

router = APIRouter(tags=["Availability"])


def _date_range(start_date: Optional[date], end_date: Optional[date]) -> tuple[date, date]:
    start = start_date or date.today()
    end = end_date or start + timedelta(days=settings.availability_horizon_days - 1)
    if end < start:
        raise ValidationFailure("end_date must not be before start_date.")
    return start, end


@router.put(
    "/providers/{provider_id}/schedule",
    response_model=RegenerationSummaryOut,
    summary="Replace a provider's weekly availability",
    description=(
        "Replaces the weekly template and regenerates slots over the horizon. "
        "Booked slots are never touched."
    ),
)
async def set_weekly_schedule(
    db: DBSession,
    provider_id: uuid.UUID,
    body: WeeklyScheduleRequest,
) -> RegenerationSummaryOut:
    entries = [
        WeeklyScheduleEntry(
            day_of_week=e.day_of_week,
            start_time=e.start_time,
            end_time=e.end_time,
            is_available=e.is_available,
        )
        for e in body.entries
    ]
    try:
        summary = await availabilityService.set_weekly_schedule(
            db,
            provider_id,
            entries,
            start_date=body.start_date,
            days=body.days,
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return RegenerationSummaryOut.model_validate(summary)


@router.get(
    "/providers/{provider_id}/schedule",
    response_model=ProviderScheduleOut,
    summary="Provider calendar view",
)
async def get_provider_schedule(
    db: DBSession,
    provider_id: uuid.UUID,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
) -> ProviderScheduleOut:
    try:
        start, end = _date_range(start_date, end_date)
        schedule = await availabilityService.get_provider_schedule(db, provider_id, start, end)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return ProviderScheduleOut(
        provider_id=provider_id,
        start_date=start,
        end_date=end,
        availability=[TimeSlotOut.model_validate(s) for s in schedule["availability"]],
        bookings=[BookingOut.model_validate(b) for b in schedule["bookings"]],
    )


@router.get(
    "/providers/{provider_id}/slots",
    response_model=list[TimeSlotOut],
    summary="List a provider's time slots",
)
async def get_provider_slots(
    db: DBSession,
    provider_id: uuid.UUID,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    only_free: bool = Query(default=False),
) -> list[TimeSlotOut]:
    try:
        start, end = _date_range(start_date, end_date)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    slots = await availabilityService.get_provider_slots(
        db, provider_id, start, end, only_free=only_free
    )
    return [TimeSlotOut.model_validate(s) for s in slots]


@router.get(
    "/availability/providers",
    response_model=list[AvailableProviderOut],
    summary="Find providers free for a window",
    description="Providers with an open slot for exactly this window, highest trust score first.",
)
async def find_available_providers(
    db: DBSession,
    slot_date: date = Query(alias="date"),
    start_time: time = Query(),
    end_time: time = Query(),
    limit: int = Query(default=20, ge=1, le=100),
) -> list[AvailableProviderOut]:
    try:
        results = await availabilityService.find_available_providers(
            db, slot_date, start_time, end_time, limit=limit
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return [AvailableProviderOut(**r) for r in results]
