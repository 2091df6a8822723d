"""
Error taxonomy shared by the verification, task and booking services.

Every error carries a stable machine-readable ``code`` so that API callers
can tell "this slot was just taken" apart from "you cannot accept a
cancelled task" without parsing messages.

  - ``InvalidTransition``     -- state change not permitted from the current state
  - ``ConflictError``         -- time-slot overlap or lost reservation race
  - ``SlotUnavailable``       -- no free slot exists for the requested window
  - ``StaleVerificationStep`` -- approved step whose validity lapsed (reported, not raised)
  - ``PersistenceFailure``    -- the store could not commit a unit of work
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Any, Optional


class TaskBridgeError(Exception):
    """Base class for all domain errors."""

    code: str = "taskbridge_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------

class NotFoundError(TaskBridgeError):
    code = "not_found"


class TaskNotFound(NotFoundError):
    code = "task_not_found"

    def __init__(self, task_id: uuid.UUID) -> None:
        self.task_id = task_id
        super().__init__(f"Task with id '{task_id}' not found.")


class BookingNotFound(NotFoundError):
    code = "booking_not_found"

    def __init__(self, booking_id: uuid.UUID) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking with id '{booking_id}' not found.")


class VerificationStepNotFound(NotFoundError):
    code = "verification_step_not_found"

    def __init__(self, identifier: Any) -> None:
        self.identifier = identifier
        super().__init__(f"Verification step '{identifier}' not found.")


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------

class ValidationFailure(TaskBridgeError):
    code = "validation_failed"


class TaskAccessDenied(TaskBridgeError):
    code = "task_access_denied"

    def __init__(self, task_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        self.task_id = task_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor '{actor_id}' is not a participant of task '{task_id}'."
        )


class InvalidTransition(TaskBridgeError):
    """A status change that the relevant state machine does not allow."""

    code = "invalid_transition"

    def __init__(
        self,
        current: str,
        attempted: str,
        *,
        entity: str = "task",
        reason: Optional[str] = None,
    ) -> None:
        self.entity = entity
        self.current = current
        self.attempted = attempted
        self.reason = reason
        message = (
            f"Cannot move {entity} from '{current}' to '{attempted}'."
        )
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            entity=self.entity,
            current=self.current,
            attempted=self.attempted,
        )
        return data


class ConflictError(TaskBridgeError):
    """The requested window overlaps an existing booking or the slot was taken."""

    code = "slot_conflict"

    def __init__(
        self,
        provider_id: uuid.UUID,
        slot_date: date,
        start_time: time,
        end_time: time,
        *,
        conflicting_booking_ids: Optional[list[uuid.UUID]] = None,
        message: Optional[str] = None,
    ) -> None:
        self.provider_id = provider_id
        self.slot_date = slot_date
        self.start_time = start_time
        self.end_time = end_time
        self.conflicting_booking_ids = conflicting_booking_ids or []
        super().__init__(
            message
            or (
                f"The slot {slot_date} {start_time:%H:%M}-{end_time:%H:%M} "
                f"for provider '{provider_id}' was just taken."
            )
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            provider_id=str(self.provider_id),
            date=self.slot_date.isoformat(),
            start_time=self.start_time.strftime("%H:%M"),
            end_time=self.end_time.strftime("%H:%M"),
            conflicting_booking_ids=[str(b) for b in self.conflicting_booking_ids],
        )
        return data


class SlotUnavailable(ConflictError):
    code = "slot_unavailable"

    def __init__(
        self,
        provider_id: uuid.UUID,
        slot_date: date,
        start_time: time,
        end_time: time,
    ) -> None:
        super().__init__(
            provider_id,
            slot_date,
            start_time,
            end_time,
            message=(
                f"Provider '{provider_id}' has no free slot on {slot_date} "
                f"{start_time:%H:%M}-{end_time:%H:%M}."
            ),
        )


# ---------------------------------------------------------------------------
# Reported conditions
# ---------------------------------------------------------------------------

class StaleVerificationStep(TaskBridgeError):
    """An approved step whose ``expires_at`` lapsed and was demoted to pending.

    Surfaced on profile views as a notice rather than raised.
    """

    code = "stale_verification_step"

    def __init__(self, step_key: str, expired_at: datetime) -> None:
        self.step_key = step_key
        self.expired_at = expired_at
        super().__init__(
            f"Verification step '{step_key}' expired at {expired_at.isoformat()} "
            f"and must be renewed."
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(step_key=self.step_key, expired_at=self.expired_at.isoformat())
        return data


class PersistenceFailure(TaskBridgeError):
    code = "persistence_failure"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)
