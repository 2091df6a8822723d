"""
Task & Verification Event Builders
==================================

Typed event records for lifecycle and verification state changes. Each
builder returns the events to hand to the notification dispatcher once the
state change has been committed; they never deliver anything themselves.

Events emitted:
  - TaskPosted               -> client
  - TaskAccepted             -> client
  - TaskDeclined             -> client
  - TaskCancelled            -> every participant except the canceller
  - TaskStarted              -> client
  - TaskCompleted            -> client and provider (rating solicitation)
  - TaskRescheduled          -> client, plus the provider when someone else moved it
  - VerificationStepChanged  -> step owner
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from taskbridge.models.scheduling import Booking
from taskbridge.models.task import Task
from taskbridge.models.verification import VerificationStep

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    TASK_POSTED = "TaskPosted"
    TASK_ACCEPTED = "TaskAccepted"
    TASK_DECLINED = "TaskDeclined"
    TASK_CANCELLED = "TaskCancelled"
    TASK_STARTED = "TaskStarted"
    TASK_COMPLETED = "TaskCompleted"
    TASK_RESCHEDULED = "TaskRescheduled"
    VERIFICATION_STEP_CHANGED = "VerificationStepChanged"


@dataclass(frozen=True)
class DomainEvent:
    """A notification intent addressed to a single user."""

    kind: EventKind
    user_id: uuid.UUID
    task_id: Optional[uuid.UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "user_id": str(self.user_id),
            "task_id": str(self.task_id) if self.task_id else None,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def booking_window(booking: Booking) -> dict[str, Any]:
    return {
        "booking_id": str(booking.id),
        "date": booking.date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M"),
        "end_time": booking.end_time.strftime("%H:%M"),
    }


def _participants(task: Task, exclude: Optional[uuid.UUID] = None) -> list[uuid.UUID]:
    users = [task.client_id]
    if task.provider_id is not None:
        users.append(task.provider_id)
    return [u for u in users if u != exclude]


def _emit(
    kind: EventKind,
    recipients: list[uuid.UUID],
    task_id: Optional[uuid.UUID],
    payload: dict[str, Any],
) -> list[DomainEvent]:
    events = [
        DomainEvent(kind=kind, user_id=user_id, task_id=task_id, payload=dict(payload))
        for user_id in recipients
    ]
    for event in events:
        logger.info(
            "Event emitted: %s for task %s -> user %s",
            event.kind.value,
            task_id,
            event.user_id,
        )
    return events


# ---------------------------------------------------------------------------
# Task lifecycle events
# ---------------------------------------------------------------------------

def task_posted(task: Task) -> list[DomainEvent]:
    return _emit(
        EventKind.TASK_POSTED,
        [task.client_id],
        task.id,
        {"title": task.title, "urgency": task.urgency.value},
    )


def task_accepted(task: Task, booking: Booking) -> list[DomainEvent]:
    """Provider accepted; tell the client when the work is booked."""
    return _emit(
        EventKind.TASK_ACCEPTED,
        [task.client_id],
        task.id,
        {
            "provider_id": str(task.provider_id),
            "title": task.title,
            **booking_window(booking),
        },
    )


def task_declined(
    task: Task,
    provider_id: uuid.UUID,
    reason: Optional[str] = None,
) -> list[DomainEvent]:
    return _emit(
        EventKind.TASK_DECLINED,
        [task.client_id],
        task.id,
        {"provider_id": str(provider_id), "title": task.title, "reason": reason},
    )


def task_cancelled(
    task: Task,
    cancelled_by: Optional[uuid.UUID],
    reason: Optional[str] = None,
    released_booking: Optional[Booking] = None,
) -> list[DomainEvent]:
    """Tell the other party; a client withdrawing an unassigned task gets
    the event as confirmation."""
    payload: dict[str, Any] = {
        "title": task.title,
        "cancelled_by": str(cancelled_by) if cancelled_by else None,
        "reason": reason,
    }
    if released_booking is not None:
        payload["released_slot"] = booking_window(released_booking)
    recipients = _participants(task, exclude=cancelled_by) or [task.client_id]
    return _emit(
        EventKind.TASK_CANCELLED,
        recipients,
        task.id,
        payload,
    )


def task_started(task: Task) -> list[DomainEvent]:
    return _emit(
        EventKind.TASK_STARTED,
        [task.client_id],
        task.id,
        {
            "provider_id": str(task.provider_id) if task.provider_id else None,
            "title": task.title,
            "started_at": task.started_at.isoformat() if task.started_at else None,
        },
    )


def task_completed(task: Task) -> list[DomainEvent]:
    """Both parties are told; each event doubles as a rating request."""
    return _emit(
        EventKind.TASK_COMPLETED,
        _participants(task),
        task.id,
        {
            "title": task.title,
            "completed_at": task.completed_at.isoformat() if task.completed_at else None,
            "solicit_rating": True,
        },
    )


def task_rescheduled(
    task: Task,
    booking: Booking,
    previous_window: dict[str, Any],
    requested_by: Optional[uuid.UUID],
    reason: Optional[str] = None,
) -> list[DomainEvent]:
    recipients = _participants(task, exclude=requested_by)
    if task.client_id not in recipients:
        recipients.insert(0, task.client_id)
    return _emit(
        EventKind.TASK_RESCHEDULED,
        recipients,
        task.id,
        {
            "title": task.title,
            "previous": previous_window,
            "reason": reason,
            **booking_window(booking),
        },
    )


# ---------------------------------------------------------------------------
# Verification events
# ---------------------------------------------------------------------------

def verification_step_changed(
    step: VerificationStep,
    previous_status: str,
    trust_score: int,
    tier: str,
) -> list[DomainEvent]:
    events = [
        DomainEvent(
            kind=EventKind.VERIFICATION_STEP_CHANGED,
            user_id=step.user_id,
            payload={
                "step_key": step.step_key,
                "previous_status": previous_status,
                "status": step.status.value,
                "rejection_reason": step.rejection_reason,
                "trust_score": trust_score,
                "verification_tier": tier,
            },
        )
    ]
    logger.info(
        "Event emitted: %s for user %s (%s: %s -> %s)",
        EventKind.VERIFICATION_STEP_CHANGED.value,
        step.user_id,
        step.step_key,
        previous_status,
        step.status.value,
    )
    return events
