"""
Availability Service
====================

Weekly availability templates and the concrete time-slot calendar derived
from them.

Key functions:
  - expand_weekly_schedule  -- pure template -> slot-window expansion
  - set_weekly_schedule     -- replace a provider's template, regenerate slots
  - regenerate_slots        -- reconcile stored slots with the template
  - get_provider_slots / get_provider_schedule -- calendar reads
  - find_available_providers -- providers free for a window, best trust first

Regeneration never touches a slot that is booked or referenced by an active
booking. Slot flags are only flipped through ``bookingService``; closed slots
that are back in the template are re-opened with ``bookingService.reopen_slot``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskbridge.core.config import settings
from taskbridge.core.errors import ValidationFailure
from taskbridge.models.scheduling import (
    ACTIVE_BOOKING_STATUSES,
    AvailabilitySchedule,
    Booking,
    TimeSlot,
)
from taskbridge.models.verification import TrustProfile, VerificationTier
from taskbridge.services import bookingService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WeeklyScheduleEntry:
    """One recurring window; ``day_of_week`` is 0=Sunday .. 6=Saturday."""

    day_of_week: int
    start_time: time
    end_time: time
    is_available: bool = True


@dataclass(frozen=True, order=True)
class SlotWindow:
    date: date
    start_time: time
    end_time: time


@dataclass(frozen=True)
class RegenerationSummary:
    created: int = 0
    reopened: int = 0
    removed: int = 0
    preserved: int = 0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def day_of_week_for(value: date) -> int:
    """Sunday-based weekday number (Python's ``weekday()`` is Monday-based)."""
    return (value.weekday() + 1) % 7


def validate_entry(entry: WeeklyScheduleEntry) -> None:
    if not 0 <= entry.day_of_week <= 6:
        raise ValidationFailure(
            f"day_of_week must be between 0 (Sunday) and 6 (Saturday), got {entry.day_of_week}."
        )
    if entry.start_time >= entry.end_time:
        raise ValidationFailure(
            f"Schedule window {entry.start_time:%H:%M}-{entry.end_time:%H:%M} "
            f"must end after it starts."
        )


def expand_weekly_schedule(
    entries: Iterable[WeeklyScheduleEntry],
    start_date: date,
    days: int,
    slot_minutes: int = 120,
) -> list[SlotWindow]:
    """Expand a weekly template into fixed-length slot windows.

    Covers ``days`` calendar days starting at ``start_date``. Each available
    entry is cut into consecutive ``slot_minutes`` windows; a trailing
    remainder shorter than one slot is dropped.
    """
    if slot_minutes <= 0:
        raise ValidationFailure("slot_minutes must be positive.")

    by_day: dict[int, list[WeeklyScheduleEntry]] = {}
    for entry in entries:
        if entry.is_available:
            by_day.setdefault(entry.day_of_week, []).append(entry)

    length = timedelta(minutes=slot_minutes)
    windows: set[SlotWindow] = set()
    for offset in range(days):
        current = start_date + timedelta(days=offset)
        for entry in by_day.get(day_of_week_for(current), []):
            cursor = datetime.combine(current, entry.start_time)
            day_end = datetime.combine(current, entry.end_time)
            while cursor + length <= day_end:
                windows.add(
                    SlotWindow(current, cursor.time(), (cursor + length).time())
                )
                cursor += length

    return sorted(windows)


# ---------------------------------------------------------------------------
# Template management
# ---------------------------------------------------------------------------

async def get_weekly_schedule(
    db: AsyncSession,
    provider_id: uuid.UUID,
) -> list[AvailabilitySchedule]:
    stmt = (
        select(AvailabilitySchedule)
        .where(AvailabilitySchedule.provider_id == provider_id)
        .order_by(AvailabilitySchedule.day_of_week, AvailabilitySchedule.start_time)
    )
    return list((await db.execute(stmt)).scalars().all())


async def set_weekly_schedule(
    db: AsyncSession,
    provider_id: uuid.UUID,
    entries: Sequence[WeeklyScheduleEntry],
    *,
    start_date: Optional[date] = None,
    days: Optional[int] = None,
) -> RegenerationSummary:
    """Replace the provider's weekly template and regenerate the horizon.

    Raises:
        ValidationFailure: If an entry has an invalid weekday or window.
    """
    for entry in entries:
        validate_entry(entry)

    await db.execute(
        delete(AvailabilitySchedule).where(
            AvailabilitySchedule.provider_id == provider_id
        )
    )
    for entry in entries:
        db.add(
            AvailabilitySchedule(
                provider_id=provider_id,
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
                is_available=entry.is_available,
            )
        )
    await db.flush()

    logger.info(
        "Weekly schedule replaced for provider %s (%d entries)",
        provider_id,
        len(entries),
    )

    return await regenerate_slots(db, provider_id, start_date=start_date, days=days)


async def regenerate_slots(
    db: AsyncSession,
    provider_id: uuid.UUID,
    *,
    start_date: Optional[date] = None,
    days: Optional[int] = None,
) -> RegenerationSummary:
    """Reconcile stored slots in ``[start_date, start_date + days)`` with the template.

    - inserts template windows that have no slot yet
    - re-opens unbooked slots that are back in the template
    - deletes unbooked slots that the template no longer covers
    - leaves booked slots, and slots referenced by an active booking, alone
    """
    start_date = start_date or datetime.now(timezone.utc).date()
    days = days if days is not None else settings.availability_horizon_days
    end_date = start_date + timedelta(days=days - 1)

    template = await get_weekly_schedule(db, provider_id)
    desired = set(
        expand_weekly_schedule(
            (
                WeeklyScheduleEntry(
                    day_of_week=row.day_of_week,
                    start_time=row.start_time,
                    end_time=row.end_time,
                    is_available=row.is_available,
                )
                for row in template
            ),
            start_date,
            days,
            settings.slot_duration_minutes,
        )
    )

    existing_stmt = select(TimeSlot).where(
        TimeSlot.provider_id == provider_id,
        TimeSlot.date >= start_date,
        TimeSlot.date <= end_date,
    )
    existing = list((await db.execute(existing_stmt)).scalars().all())

    held_stmt = select(Booking.time_slot_id).where(
        Booking.provider_id == provider_id,
        Booking.time_slot_id.is_not(None),
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    held_ids = {row[0] for row in (await db.execute(held_stmt)).all()}

    reopened = removed = preserved = 0
    present: set[SlotWindow] = set()
    for slot in existing:
        window = SlotWindow(slot.date, slot.start_time, slot.end_time)
        present.add(window)
        if slot.is_booked or slot.id in held_ids:
            preserved += 1
            continue
        if window in desired:
            if not slot.is_available and await bookingService.reopen_slot(db, slot):
                reopened += 1
        else:
            await db.delete(slot)
            removed += 1

    missing = sorted(desired - present)
    for window in missing:
        db.add(
            TimeSlot(
                provider_id=provider_id,
                date=window.date,
                start_time=window.start_time,
                end_time=window.end_time,
                is_available=True,
                is_booked=False,
            )
        )

    await db.flush()

    summary = RegenerationSummary(
        created=len(missing),
        reopened=reopened,
        removed=removed,
        preserved=preserved,
    )
    logger.info(
        "Slots regenerated for provider %s (%s..%s): %s",
        provider_id,
        start_date,
        end_date,
        summary,
    )
    return summary


# ---------------------------------------------------------------------------
# Calendar reads
# ---------------------------------------------------------------------------

async def get_provider_slots(
    db: AsyncSession,
    provider_id: uuid.UUID,
    start_date: date,
    end_date: date,
    *,
    only_free: bool = False,
) -> list[TimeSlot]:
    stmt = select(TimeSlot).where(
        TimeSlot.provider_id == provider_id,
        TimeSlot.date >= start_date,
        TimeSlot.date <= end_date,
    )
    if only_free:
        stmt = stmt.where(
            TimeSlot.is_available.is_(True),
            TimeSlot.is_booked.is_(False),
        )
    stmt = stmt.order_by(TimeSlot.date, TimeSlot.start_time)
    return list((await db.execute(stmt)).scalars().all())


async def get_provider_bookings(
    db: AsyncSession,
    provider_id: uuid.UUID,
    start_date: date,
    end_date: date,
) -> list[Booking]:
    stmt = (
        select(Booking)
        .where(
            Booking.provider_id == provider_id,
            Booking.date >= start_date,
            Booking.date <= end_date,
        )
        .order_by(Booking.date, Booking.start_time)
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_provider_schedule(
    db: AsyncSession,
    provider_id: uuid.UUID,
    start_date: date,
    end_date: date,
) -> dict[str, Any]:
    """Calendar view: every slot in the range plus the bookings on it.

    Returns:
        Dict with ``availability`` and ``bookings`` lists.
    """
    if end_date < start_date:
        raise ValidationFailure("end_date must not be before start_date.")
    return {
        "availability": await get_provider_slots(db, provider_id, start_date, end_date),
        "bookings": await get_provider_bookings(db, provider_id, start_date, end_date),
    }


async def find_available_providers(
    db: AsyncSession,
    slot_date: date,
    start_time: time,
    end_time: time,
    *,
    limit: int = 20,
) -> list[dict[str, Any]]:
    """Providers holding an open slot for the window, highest trust score first.

    Providers without a trust profile rank as score 0 / basic.
    """
    if start_time >= end_time:
        raise ValidationFailure("The requested window must end after it starts.")

    score = func.coalesce(TrustProfile.trust_score, 0)
    stmt = (
        select(TimeSlot, TrustProfile)
        .outerjoin(TrustProfile, TrustProfile.user_id == TimeSlot.provider_id)
        .where(
            TimeSlot.date == slot_date,
            TimeSlot.start_time == start_time,
            TimeSlot.end_time == end_time,
            TimeSlot.is_available.is_(True),
            TimeSlot.is_booked.is_(False),
        )
        .order_by(score.desc(), TimeSlot.provider_id)
        .limit(limit)
    )
    rows = (await db.execute(stmt)).all()

    results = [
        {
            "provider_id": slot.provider_id,
            "slot_id": slot.id,
            "trust_score": profile.trust_score if profile else 0,
            "verification_tier": (
                profile.verification_tier if profile else VerificationTier.BASIC
            ),
        }
        for slot, profile in rows
    ]
    logger.info(
        "Available providers for %s %s-%s: %d found",
        slot_date,
        start_time.strftime("%H:%M"),
        end_time.strftime("%H:%M"),
        len(results),
    )
    return results
