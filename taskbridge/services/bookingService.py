"""
Booking Service (conflict resolver)
===================================

Reserves, reschedules, completes and releases provider time slots, and
re-opens closed slots for the availability template. This is the only module
that flips ``TimeSlot.is_available`` / ``is_booked``.

Reservations, reschedules and releases run inside a SAVEPOINT (``db.begin_nested()``):

  1. conflict check against the provider's active bookings
  2. exact-window slot lookup
  3. conditional claim: ``UPDATE time_slots ... WHERE is_available AND NOT is_booked``
     -- zero rows means a competing writer won the slot
  4. booking insert / update
  5. read-after-write check that the slot now belongs to the task

Any failure rolls the savepoint back, so the calendar and the booking
table are never left half-updated.

Overlap rule: windows ``[s1, e1)`` and ``[s2, e2)`` on the same provider
and date conflict iff ``s1 < e2 and s2 < e1``. Back-to-back windows never
conflict.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from taskbridge.core.errors import (
    BookingNotFound,
    ConflictError,
    InvalidTransition,
    PersistenceFailure,
    SlotUnavailable,
    ValidationFailure,
)
from taskbridge.models.scheduling import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    TimeSlot,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Overlap rule
# ---------------------------------------------------------------------------

def intervals_overlap(
    start_a: time,
    end_a: time,
    start_b: time,
    end_b: time,
) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


def _validate_window(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise ValidationFailure(
            f"Window {start_time:%H:%M}-{end_time:%H:%M} must end after it starts."
        )


async def find_conflicts(
    db: AsyncSession,
    provider_id: uuid.UUID,
    slot_date: date,
    start_time: time,
    end_time: time,
    *,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> list[Booking]:
    """Active bookings of the provider that overlap the window."""
    stmt = select(Booking).where(
        Booking.provider_id == provider_id,
        Booking.date == slot_date,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.start_time < end_time,
        Booking.end_time > start_time,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    return list((await db.execute(stmt)).scalars().all())


# ---------------------------------------------------------------------------
# Slot claim / verification
# ---------------------------------------------------------------------------

async def _claim_slot(
    db: AsyncSession,
    slot: TimeSlot,
    task_id: uuid.UUID,
) -> None:
    """Flip a free slot to booked; raise ``ConflictError`` if someone beat us."""
    result = await db.execute(
        update(TimeSlot)
        .where(
            TimeSlot.id == slot.id,
            TimeSlot.is_available.is_(True),
            TimeSlot.is_booked.is_(False),
        )
        .values(is_available=False, is_booked=True, task_id=task_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(
            "Slot %s for provider %s was claimed concurrently (task %s)",
            slot.id,
            slot.provider_id,
            task_id,
        )
        raise ConflictError(slot.provider_id, slot.date, slot.start_time, slot.end_time)


def _slot_held_by(slot: TimeSlot, task_id: uuid.UUID) -> bool:
    return slot.is_booked and not slot.is_available and slot.task_id == task_id


async def _verify_slot(
    db: AsyncSession,
    slot_id: uuid.UUID,
    task_id: uuid.UUID,
) -> TimeSlot:
    """Re-read the slot row and confirm the claim stuck."""
    stmt = (
        select(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .execution_options(populate_existing=True)
    )
    slot = (await db.execute(stmt)).scalar_one_or_none()
    if slot is None or not _slot_held_by(slot, task_id):
        raise PersistenceFailure(
            f"Slot '{slot_id}' does not reflect the reservation for task '{task_id}'."
        )
    return slot


async def _free_slot(db: AsyncSession, slot_id: Optional[uuid.UUID], task_id: uuid.UUID) -> None:
    if slot_id is None:
        return
    slot = await db.get(TimeSlot, slot_id)
    # Only hand back a slot that is still ours
    if slot is None or slot.task_id not in (task_id, None):
        return
    slot.is_available = True
    slot.is_booked = False
    slot.task_id = None


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    """Raises:
        BookingNotFound: If no booking has this id.
    """
    booking = (
        await db.execute(select(Booking).where(Booking.id == booking_id))
    ).scalar_one_or_none()
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


async def find_free_slot(
    db: AsyncSession,
    provider_id: uuid.UUID,
    slot_date: date,
    start_time: time,
    end_time: time,
) -> Optional[TimeSlot]:
    """The provider's open slot for exactly this window, if any."""
    stmt = select(TimeSlot).where(
        TimeSlot.provider_id == provider_id,
        TimeSlot.date == slot_date,
        TimeSlot.start_time == start_time,
        TimeSlot.end_time == end_time,
        TimeSlot.is_available.is_(True),
        TimeSlot.is_booked.is_(False),
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_active_booking_for_task(
    db: AsyncSession,
    task_id: uuid.UUID,
) -> Optional[Booking]:
    stmt = (
        select(Booking)
        .where(
            Booking.task_id == task_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        .order_by(Booking.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def reopen_slot(db: AsyncSession, slot: TimeSlot) -> bool:
    """Mark a closed, unbooked slot available again.

    Returns False when the slot was booked or claimed in the meantime.
    """
    result = await db.execute(
        update(TimeSlot)
        .where(
            TimeSlot.id == slot.id,
            TimeSlot.is_available.is_(False),
            TimeSlot.is_booked.is_(False),
            TimeSlot.task_id.is_(None),
        )
        .values(is_available=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    set_committed_value(slot, "is_available", True)
    return True


async def reserve(
    db: AsyncSession,
    *,
    provider_id: uuid.UUID,
    client_id: uuid.UUID,
    task_id: uuid.UUID,
    slot_date: date,
    start_time: time,
    end_time: time,
    notes: Optional[str] = None,
) -> Booking:
    """Book the provider's slot for exactly this window.

    Raises:
        ValidationFailure: If the window is empty or inverted.
        ConflictError: If the window overlaps an active booking or the slot
            was claimed concurrently.
        SlotUnavailable: If the provider has no free slot for the window.
        PersistenceFailure: If the store rejected the change.
    """
    _validate_window(start_time, end_time)

    try:
        async with db.begin_nested():
            conflicts = await find_conflicts(db, provider_id, slot_date, start_time, end_time)
            if conflicts:
                raise ConflictError(
                    provider_id,
                    slot_date,
                    start_time,
                    end_time,
                    conflicting_booking_ids=[b.id for b in conflicts],
                    message=(
                        f"Provider '{provider_id}' already has a booking overlapping "
                        f"{slot_date} {start_time:%H:%M}-{end_time:%H:%M}."
                    ),
                )

            slot = await find_free_slot(db, provider_id, slot_date, start_time, end_time)
            if slot is None:
                raise SlotUnavailable(provider_id, slot_date, start_time, end_time)

            await _claim_slot(db, slot, task_id)

            booking = Booking(
                provider_id=provider_id,
                client_id=client_id,
                task_id=task_id,
                time_slot_id=slot.id,
                date=slot_date,
                start_time=start_time,
                end_time=end_time,
                status=BookingStatus.CONFIRMED,
                notes=notes,
            )
            db.add(booking)
            await db.flush()

            await _verify_slot(db, slot.id, task_id)
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not persist the reservation.", cause=exc) from exc

    logger.info(
        "Booking %s reserved: provider %s, %s %s-%s (task %s)",
        booking.id,
        provider_id,
        slot_date,
        start_time.strftime("%H:%M"),
        end_time.strftime("%H:%M"),
        task_id,
    )
    return booking


async def release(
    db: AsyncSession,
    booking_id: uuid.UUID,
) -> Booking:
    """Cancel a booking and hand its slot back to the calendar.

    Releasing an already cancelled booking is a no-op.

    Raises:
        BookingNotFound: If no booking has this id.
        InvalidTransition: If the booking is already completed.
    """
    booking = await get_booking(db, booking_id)

    if booking.status == BookingStatus.CANCELLED:
        logger.info("Booking %s already released; nothing to do", booking_id)
        return booking
    if booking.status == BookingStatus.COMPLETED:
        raise InvalidTransition(
            booking.status.value,
            BookingStatus.CANCELLED.value,
            entity="booking",
        )

    try:
        async with db.begin_nested():
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = datetime.now(timezone.utc)
            await _free_slot(db, booking.time_slot_id, booking.task_id)
            await db.flush()
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not release the booking.", cause=exc) from exc

    logger.info(
        "Booking %s released: provider %s, %s %s-%s",
        booking.id,
        booking.provider_id,
        booking.date,
        booking.start_time.strftime("%H:%M"),
        booking.end_time.strftime("%H:%M"),
    )
    return booking


async def reschedule(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    new_date: date,
    new_start_time: time,
    new_end_time: time,
) -> Booking:
    """Move an active booking to another free slot of the same provider.

    The new slot is claimed and the old one freed in one savepoint; on any
    conflict nothing changes. Moving to the current window is a no-op.

    Raises:
        BookingNotFound: If no booking has this id.
        InvalidTransition: If the booking is not active.
        ConflictError / SlotUnavailable: If the new window cannot be booked.
    """
    _validate_window(new_start_time, new_end_time)
    booking = await get_booking(db, booking_id)

    if not booking.is_active:
        raise InvalidTransition(
            booking.status.value,
            BookingStatus.RESCHEDULED.value,
            entity="booking",
        )

    if (booking.date, booking.start_time, booking.end_time) == (
        new_date,
        new_start_time,
        new_end_time,
    ):
        logger.info("Booking %s already at the requested window", booking_id)
        return booking

    previous = (booking.date, booking.start_time, booking.end_time)

    try:
        async with db.begin_nested():
            conflicts = await find_conflicts(
                db,
                booking.provider_id,
                new_date,
                new_start_time,
                new_end_time,
                exclude_booking_id=booking.id,
            )
            if conflicts:
                raise ConflictError(
                    booking.provider_id,
                    new_date,
                    new_start_time,
                    new_end_time,
                    conflicting_booking_ids=[b.id for b in conflicts],
                    message=(
                        f"Provider '{booking.provider_id}' already has a booking "
                        f"overlapping {new_date} {new_start_time:%H:%M}-{new_end_time:%H:%M}."
                    ),
                )

            new_slot = await find_free_slot(
                db, booking.provider_id, new_date, new_start_time, new_end_time
            )
            if new_slot is None:
                raise SlotUnavailable(
                    booking.provider_id, new_date, new_start_time, new_end_time
                )

            await _claim_slot(db, new_slot, booking.task_id)
            await _free_slot(db, booking.time_slot_id, booking.task_id)

            booking.time_slot_id = new_slot.id
            booking.date = new_date
            booking.start_time = new_start_time
            booking.end_time = new_end_time
            booking.status = BookingStatus.RESCHEDULED
            await db.flush()

            await _verify_slot(db, new_slot.id, booking.task_id)
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not persist the reschedule.", cause=exc) from exc

    logger.info(
        "Booking %s rescheduled: %s %s-%s -> %s %s-%s",
        booking.id,
        previous[0],
        previous[1].strftime("%H:%M"),
        previous[2].strftime("%H:%M"),
        new_date,
        new_start_time.strftime("%H:%M"),
        new_end_time.strftime("%H:%M"),
    )
    return booking


async def complete_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
) -> Booking:
    """Mark the booking done. The slot stays booked as a historical record.

    Raises:
        BookingNotFound: If no booking has this id.
        InvalidTransition: If the booking was cancelled.
    """
    booking = await get_booking(db, booking_id)

    if booking.status == BookingStatus.COMPLETED:
        return booking
    if booking.status == BookingStatus.CANCELLED:
        raise InvalidTransition(
            booking.status.value,
            BookingStatus.COMPLETED.value,
            entity="booking",
        )

    booking.status = BookingStatus.COMPLETED
    await db.flush()

    logger.info("Booking %s completed (task %s)", booking.id, booking.task_id)
    return booking
