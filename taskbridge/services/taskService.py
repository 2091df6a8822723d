"""
Task Service
============

Business logic for the task lifecycle. Every status change is validated by
``taskStateManager`` first, then written as a conditional update on the
status the caller saw, so a request acting on a stale read loses with
``InvalidTransition``. The booking calendar is moved in lockstep through
``bookingService`` inside the same savepoint, and the notification events
for the change are returned to the caller to dispatch after the commit.

Key functions:
  - create_task     -- new task in draft (or posted straight away)
  - publish_task    -- draft -> posted
  - accept_task     -- posted -> applications, reserves the provider's slot
  - decline_task    -- posted -> cancelled on the provider's side
  - start_task      -- applications -> in_progress
  - complete_task   -- in_progress -> completed, booking kept as history
  - cancel_task     -- any open state -> cancelled, releases the slot
  - reschedule_task -- moves the booking of a scheduled task
  - get_task / list_tasks_for_client / list_tasks_for_provider
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from taskbridge.core.errors import (
    InvalidTransition,
    PersistenceFailure,
    TaskAccessDenied,
    TaskNotFound,
    ValidationFailure,
)
from taskbridge.events import taskEvents
from taskbridge.events.taskEvents import DomainEvent
from taskbridge.models.base import utcnow
from taskbridge.models.scheduling import Booking
from taskbridge.models.task import Task, TaskStatus, TaskUrgency
from taskbridge.services import bookingService
from taskbridge.services.taskStateManager import (
    ActorType,
    can_reschedule,
    ensure_transition,
    get_valid_transitions,
)

logger = logging.getLogger(__name__)

_PRIVILEGED = (ActorType.SYSTEM, ActorType.ADMIN)


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaginatedResult:
    """A page of results plus metadata."""

    items: Sequence
    total_items: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total_items == 0:
            return 0
        return math.ceil(self.total_items / self.page_size)


@dataclass
class TaskTransitionOutcome:
    task: Task
    booking: Optional[Booking] = None
    events: list[DomainEvent] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _get_task(db: AsyncSession, task_id: uuid.UUID) -> Task:
    task = (
        await db.execute(select(Task).where(Task.id == task_id))
    ).scalar_one_or_none()
    if task is None:
        raise TaskNotFound(task_id)
    return task


def _check_participant(
    task: Task,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType,
    *,
    allow_unassigned_provider: bool = False,
) -> None:
    """Refuse actors who are neither the task's client nor its provider.

    System and admin actors may act on behalf of either party. While no
    provider is assigned, ``allow_unassigned_provider`` lets any provider
    respond to the posting.
    """
    if actor_type in _PRIVILEGED:
        return
    if actor_type == ActorType.CLIENT and actor_id == task.client_id:
        return
    if actor_type == ActorType.PROVIDER:
        if task.provider_id is None and allow_unassigned_provider:
            return
        if task.provider_id is not None and actor_id == task.provider_id:
            return
    raise TaskAccessDenied(task.id, actor_id)


def _scheduled_at(slot_date: date, start_time: time) -> datetime:
    return datetime.combine(slot_date, start_time, tzinfo=timezone.utc)


async def _claim_transition(
    db: AsyncSession,
    task: Task,
    old_status: TaskStatus,
    new_status: TaskStatus,
    **values: Any,
) -> dict[str, Any]:
    """Write the new status only if the row still holds ``old_status``.

    Zero affected rows means another request moved the task first. The
    returned values are copied onto ``task`` by :func:`_apply_claim` once
    the enclosing savepoint has been released.
    """
    values["status"] = new_status
    values["updated_at"] = utcnow()
    result = await db.execute(
        update(Task)
        .where(Task.id == task.id, Task.status == old_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning(
            "Task %s left '%s' concurrently; refusing move to '%s'",
            task.id,
            old_status.value,
            new_status.value,
        )
        raise InvalidTransition(
            old_status.value,
            new_status.value,
            reason="The task was changed by another request.",
        )
    return values


def _apply_claim(task: Task, values: dict[str, Any]) -> None:
    for key, value in values.items():
        set_committed_value(task, key, value)


def _log_transition(
    task: Task,
    old_status: TaskStatus,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType,
) -> None:
    logger.info(
        "Task %s transitioned: %s -> %s (actor=%s, type=%s)",
        task.id,
        old_status.value,
        task.status.value,
        actor_id,
        actor_type.value,
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_task(
    db: AsyncSession,
    *,
    client_id: uuid.UUID,
    title: str,
    address: str,
    budget_min: int,
    budget_max: int,
    description: Optional[str] = None,
    urgency: TaskUrgency = TaskUrgency.NORMAL,
    scheduled_at: Optional[datetime] = None,
    estimated_duration_minutes: Optional[int] = None,
    publish: bool = False,
) -> TaskTransitionOutcome:
    """Create a task in ``draft``, or directly in ``posted`` when ``publish`` is set.

    Raises:
        ValidationFailure: If the title is blank or the budget range is invalid.
    """
    if not title.strip():
        raise ValidationFailure("Task title must not be blank.")
    if budget_min < 0 or budget_max < 0:
        raise ValidationFailure("Budget values must not be negative.")
    if budget_min > budget_max:
        raise ValidationFailure(
            f"budget_min ({budget_min}) must not exceed budget_max ({budget_max})."
        )
    if estimated_duration_minutes is not None and estimated_duration_minutes <= 0:
        raise ValidationFailure("estimated_duration_minutes must be positive.")

    task = Task(
        client_id=client_id,
        title=title.strip(),
        description=description,
        address=address,
        budget_min=budget_min,
        budget_max=budget_max,
        urgency=urgency,
        scheduled_at=scheduled_at,
        estimated_duration_minutes=estimated_duration_minutes,
        status=TaskStatus.POSTED if publish else TaskStatus.DRAFT,
    )
    db.add(task)
    await db.flush()

    events = taskEvents.task_posted(task) if publish else []

    logger.info(
        "Task created: %s (client=%s, status=%s, urgency=%s)",
        task.id,
        client_id,
        task.status.value,
        urgency.value,
    )
    return TaskTransitionOutcome(task=task, events=events)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

async def publish_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType = ActorType.CLIENT,
) -> TaskTransitionOutcome:
    task = await _get_task(db, task_id)
    _check_participant(task, actor_id, actor_type)

    old_status = task.status
    ensure_transition(old_status, TaskStatus.POSTED, actor_type)
    _apply_claim(task, await _claim_transition(db, task, old_status, TaskStatus.POSTED))

    _log_transition(task, old_status, actor_id, actor_type)
    return TaskTransitionOutcome(task=task, events=taskEvents.task_posted(task))


async def accept_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    provider_id: uuid.UUID,
    slot_date: date,
    start_time: time,
    end_time: time,
    actor_type: ActorType = ActorType.PROVIDER,
    notes: Optional[str] = None,
) -> TaskTransitionOutcome:
    """Provider accepts a posted task and books the requested window.

    The status claim and the slot reservation share one savepoint, so a
    booking conflict leaves the task untouched and a provider who lost the
    race for the task leaves the calendar untouched.

    Raises:
        TaskNotFound: If the task does not exist.
        InvalidTransition: If the task is not ``posted`` (e.g. another
            provider already accepted it).
        ConflictError / SlotUnavailable: If the window cannot be booked.
        PersistenceFailure: If the store rejected the change.
    """
    task = await _get_task(db, task_id)

    old_status = task.status
    ensure_transition(old_status, TaskStatus.APPLICATIONS, actor_type)
    _check_participant(task, provider_id, actor_type, allow_unassigned_provider=True)

    try:
        async with db.begin_nested():
            claimed = await _claim_transition(
                db,
                task,
                old_status,
                TaskStatus.APPLICATIONS,
                provider_id=provider_id,
                responded_at=datetime.now(timezone.utc),
                scheduled_at=_scheduled_at(slot_date, start_time),
            )
            booking = await bookingService.reserve(
                db,
                provider_id=provider_id,
                client_id=task.client_id,
                task_id=task.id,
                slot_date=slot_date,
                start_time=start_time,
                end_time=end_time,
                notes=notes,
            )
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not persist the acceptance.", cause=exc) from exc
    _apply_claim(task, claimed)

    _log_transition(task, old_status, provider_id, actor_type)
    return TaskTransitionOutcome(
        task=task,
        booking=booking,
        events=taskEvents.task_accepted(task, booking),
    )


async def decline_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    provider_id: uuid.UUID,
    reason: Optional[str] = None,
    actor_type: ActorType = ActorType.PROVIDER,
) -> TaskTransitionOutcome:
    """Provider turns down a posted task. No slot is touched.

    Raises:
        InvalidTransition: If the task is not ``posted``.
    """
    task = await _get_task(db, task_id)
    _check_participant(task, provider_id, actor_type, allow_unassigned_provider=True)

    old_status = task.status
    if old_status != TaskStatus.POSTED:
        raise InvalidTransition(
            old_status.value,
            TaskStatus.CANCELLED.value,
            reason="Only a posted task can be declined.",
        )
    ensure_transition(old_status, TaskStatus.CANCELLED, actor_type)

    responded_at = datetime.now(timezone.utc)
    claimed = await _claim_transition(
        db,
        task,
        old_status,
        TaskStatus.CANCELLED,
        responded_at=responded_at,
        cancelled_at=responded_at,
        cancellation_reason=reason,
    )
    _apply_claim(task, claimed)

    _log_transition(task, old_status, provider_id, actor_type)
    return TaskTransitionOutcome(
        task=task,
        events=taskEvents.task_declined(task, provider_id, reason),
    )


async def start_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType = ActorType.CLIENT,
) -> TaskTransitionOutcome:
    """Client authorizes the start of work.

    Raises:
        InvalidTransition: If the task is not in ``applications`` or has no
            active booking.
    """
    task = await _get_task(db, task_id)
    _check_participant(task, actor_id, actor_type)

    old_status = task.status
    ensure_transition(old_status, TaskStatus.IN_PROGRESS, actor_type)

    booking = await bookingService.get_active_booking_for_task(db, task.id)
    if booking is None:
        raise InvalidTransition(
            old_status.value,
            TaskStatus.IN_PROGRESS.value,
            reason="The task has no active booking.",
        )

    claimed = await _claim_transition(
        db,
        task,
        old_status,
        TaskStatus.IN_PROGRESS,
        started_at=datetime.now(timezone.utc),
    )
    _apply_claim(task, claimed)

    _log_transition(task, old_status, actor_id, actor_type)
    return TaskTransitionOutcome(
        task=task,
        booking=booking,
        events=taskEvents.task_started(task),
    )


async def complete_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType,
) -> TaskTransitionOutcome:
    """Either party marks the work done; the slot stays booked as history."""
    task = await _get_task(db, task_id)
    _check_participant(task, actor_id, actor_type)

    old_status = task.status
    ensure_transition(old_status, TaskStatus.COMPLETED, actor_type)

    try:
        async with db.begin_nested():
            claimed = await _claim_transition(
                db,
                task,
                old_status,
                TaskStatus.COMPLETED,
                completed_at=datetime.now(timezone.utc),
            )
            booking = await bookingService.get_active_booking_for_task(db, task.id)
            if booking is not None:
                booking = await bookingService.complete_booking(db, booking.id)
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not persist the completion.", cause=exc) from exc
    _apply_claim(task, claimed)

    if booking is None:
        logger.warning("Task %s completed without an active booking", task.id)

    _log_transition(task, old_status, actor_id, actor_type)
    return TaskTransitionOutcome(
        task=task,
        booking=booking,
        events=taskEvents.task_completed(task),
    )


async def cancel_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType,
    reason: Optional[str] = None,
) -> TaskTransitionOutcome:
    """Cancel an open task and release its booked slot, if any.

    Raises:
        InvalidTransition: If the task is in ``draft`` or a terminal state.
    """
    task = await _get_task(db, task_id)
    _check_participant(task, actor_id, actor_type)

    old_status = task.status
    ensure_transition(old_status, TaskStatus.CANCELLED, actor_type)

    released: Optional[Booking] = None
    try:
        async with db.begin_nested():
            claimed = await _claim_transition(
                db,
                task,
                old_status,
                TaskStatus.CANCELLED,
                cancelled_at=datetime.now(timezone.utc),
                cancellation_reason=reason,
            )
            booking = await bookingService.get_active_booking_for_task(db, task.id)
            if booking is not None:
                released = await bookingService.release(db, booking.id)
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not persist the cancellation.", cause=exc) from exc
    _apply_claim(task, claimed)

    _log_transition(task, old_status, actor_id, actor_type)
    return TaskTransitionOutcome(
        task=task,
        booking=released,
        events=taskEvents.task_cancelled(task, actor_id, reason, released),
    )


async def reschedule_task(
    db: AsyncSession,
    task_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID],
    actor_type: ActorType,
    new_date: date,
    new_start_time: time,
    new_end_time: time,
    reason: Optional[str] = None,
) -> TaskTransitionOutcome:
    """Move a scheduled task's booking to another free slot.

    Raises:
        InvalidTransition: If the task is not in ``applications`` or
            ``selected``, or has no active booking.
        ConflictError / SlotUnavailable: If the new window cannot be booked;
            the existing booking is kept.
    """
    task = await _get_task(db, task_id)
    _check_participant(task, actor_id, actor_type)

    if not can_reschedule(task.status):
        raise InvalidTransition(
            task.status.value,
            "rescheduled",
            reason="Only scheduled tasks that have not started can be rescheduled.",
        )

    booking = await bookingService.get_active_booking_for_task(db, task.id)
    if booking is None:
        raise InvalidTransition(
            task.status.value,
            "rescheduled",
            reason="The task has no active booking.",
        )

    if (booking.date, booking.start_time, booking.end_time) == (
        new_date,
        new_start_time,
        new_end_time,
    ):
        return TaskTransitionOutcome(task=task, booking=booking)

    previous = taskEvents.booking_window(booking)
    try:
        async with db.begin_nested():
            # Status is unchanged; the claim only guards against a
            # concurrent start or cancellation.
            claimed = await _claim_transition(
                db,
                task,
                task.status,
                task.status,
                scheduled_at=_scheduled_at(new_date, new_start_time),
            )
            booking = await bookingService.reschedule(
                db,
                booking.id,
                new_date=new_date,
                new_start_time=new_start_time,
                new_end_time=new_end_time,
            )
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Could not persist the reschedule.", cause=exc) from exc
    _apply_claim(task, claimed)

    logger.info(
        "Task %s rescheduled to %s %s-%s (actor=%s, type=%s)",
        task.id,
        new_date,
        new_start_time.strftime("%H:%M"),
        new_end_time.strftime("%H:%M"),
        actor_id,
        actor_type.value,
    )
    return TaskTransitionOutcome(
        task=task,
        booking=booking,
        events=taskEvents.task_rescheduled(task, booking, previous, actor_id, reason),
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_task(db: AsyncSession, task_id: uuid.UUID) -> Task:
    """Fetch a task with its bookings eagerly loaded.

    Raises:
        TaskNotFound: If the task does not exist.
    """
    stmt = (
        select(Task)
        .options(selectinload(Task.bookings))
        .where(Task.id == task_id)
        .execution_options(populate_existing=True)
    )
    task = (await db.execute(stmt)).scalar_one_or_none()
    if task is None:
        raise TaskNotFound(task_id)
    return task


async def get_available_transitions(
    db: AsyncSession,
    task_id: uuid.UUID,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[TaskStatus]:
    task = await _get_task(db, task_id)
    return get_valid_transitions(task.status, actor_type)


async def _paginate(
    db: AsyncSession,
    *filters,
    page: int,
    page_size: int,
) -> PaginatedResult:
    count_stmt = select(func.count()).select_from(Task).where(*filters)
    total = (await db.execute(count_stmt)).scalar_one()

    offset = (page - 1) * page_size
    stmt = (
        select(Task)
        .options(selectinload(Task.bookings))
        .where(*filters)
        .order_by(Task.created_at.desc())
        .offset(offset)
        .limit(page_size)
    )
    items = (await db.execute(stmt)).scalars().all()

    return PaginatedResult(
        items=items,
        total_items=total,
        page=page,
        page_size=page_size,
    )


async def list_tasks_for_client(
    db: AsyncSession,
    client_id: uuid.UUID,
    *,
    status: Optional[TaskStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResult:
    filters = [Task.client_id == client_id]
    if status is not None:
        filters.append(Task.status == status)
    return await _paginate(db, *filters, page=page, page_size=page_size)


async def list_tasks_for_provider(
    db: AsyncSession,
    provider_id: uuid.UUID,
    *,
    status: Optional[TaskStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResult:
    filters = [Task.provider_id == provider_id]
    if status is not None:
        filters.append(Task.status == status)
    return await _paginate(db, *filters, page=page, page_size=page_size)
