"""
Pydantic v2 schemas for provider availability, time slots and bookings.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from taskbridge.models.scheduling import BookingStatus
from taskbridge.models.verification import VerificationTier


# ---------------------------------------------------------------------------
# Weekly template input
# ---------------------------------------------------------------------------

class WeeklyScheduleEntryIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6, description="0=Sunday .. 6=Saturday")
    start_time: time
    end_time: time
    is_available: bool = True


class WeeklyScheduleRequest(BaseModel):
    """Replaces the provider's whole weekly template."""

    entries: list[WeeklyScheduleEntryIn] = Field(default_factory=list)
    start_date: Optional[date] = Field(
        default=None, description="First day to regenerate (defaults to today)"
    )
    days: Optional[int] = Field(
        default=None, ge=1, le=365, description="Horizon length in days"
    )


class RegenerationSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created: int
    reopened: int
    removed: int
    preserved: int


# ---------------------------------------------------------------------------
# Calendar output
# ---------------------------------------------------------------------------

class TimeSlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_id: uuid.UUID
    date: date
    start_time: time
    end_time: time
    is_available: bool
    is_booked: bool
    task_id: Optional[uuid.UUID] = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_id: uuid.UUID
    client_id: uuid.UUID
    task_id: uuid.UUID
    time_slot_id: Optional[uuid.UUID] = None
    date: date
    start_time: time
    end_time: time
    status: BookingStatus
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class ProviderScheduleOut(BaseModel):
    provider_id: uuid.UUID
    start_date: date
    end_date: date
    availability: list[TimeSlotOut]
    bookings: list[BookingOut]


class AvailableProviderOut(BaseModel):
    provider_id: uuid.UUID
    slot_id: uuid.UUID
    trust_score: int
    verification_tier: VerificationTier
