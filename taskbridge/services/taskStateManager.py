"""
Task State Manager
==================

Finite state machine governing every task status change. The task service
runs each transition through ``ensure_transition`` before touching the
booking calendar or persisting anything.

State machine overview::

    draft --> posted --> applications --> in_progress --> completed

    posted | applications | selected | in_progress --> cancelled

``completed``, ``cancelled`` and ``disputed`` are terminal. ``selected``
and ``disputed`` have no inbound edge here; they only appear on rows
written by other systems.

Guards enforce which actor type may trigger each edge. System and admin
actors may act on behalf of either party.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from taskbridge.core.errors import InvalidTransition
from taskbridge.models.task import TaskStatus


# ---------------------------------------------------------------------------
# Actor types for guard enforcement
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    SYSTEM = "system"
    ADMIN = "admin"


_PRIVILEGED: frozenset[ActorType] = frozenset({ActorType.SYSTEM, ActorType.ADMIN})


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.DRAFT: {
        TaskStatus.POSTED,
    },
    TaskStatus.POSTED: {
        TaskStatus.APPLICATIONS,
        TaskStatus.CANCELLED,  # provider declines or client withdraws
    },
    TaskStatus.APPLICATIONS: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.CANCELLED,
    },
    TaskStatus.SELECTED: {
        TaskStatus.CANCELLED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.COMPLETED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
    TaskStatus.DISPUTED: set(),
}

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

# A booking may be moved while the task is scheduled but not yet started
RESCHEDULABLE_STATUSES: frozenset[TaskStatus] = frozenset({
    TaskStatus.APPLICATIONS,
    TaskStatus.SELECTED,
})


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_publish(actor_type: ActorType) -> TransitionResult:
    """Only the client publishes their own draft."""
    if actor_type not in (ActorType.CLIENT, *_PRIVILEGED):
        return TransitionResult(
            allowed=False,
            reason="Only the client can publish a task.",
        )
    return TransitionResult(allowed=True)


def _guard_provider_accept(actor_type: ActorType) -> TransitionResult:
    if actor_type not in (ActorType.PROVIDER, *_PRIVILEGED):
        return TransitionResult(
            allowed=False,
            reason="Only a provider can accept a task.",
        )
    return TransitionResult(allowed=True)


def _guard_start_work(actor_type: ActorType) -> TransitionResult:
    """The client authorizes the start of work."""
    if actor_type not in (ActorType.CLIENT, *_PRIVILEGED):
        return TransitionResult(
            allowed=False,
            reason="Only the client can authorize the start of work.",
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: TaskStatus,
    new_status: TaskStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> TransitionResult:
    """Validate whether a task status transition is allowed.

    Checks two layers:
    1. Is the transition structurally valid per the state machine?
    2. Does the actor have permission for this specific transition (guards)?
    """
    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value)) or 'none'}."
            ),
        )

    if new_status == TaskStatus.POSTED:
        return _guard_publish(actor_type)

    if new_status == TaskStatus.APPLICATIONS:
        return _guard_provider_accept(actor_type)

    if new_status == TaskStatus.IN_PROGRESS:
        return _guard_start_work(actor_type)

    # Completion and cancellation are open to either party
    return TransitionResult(allowed=True)


def ensure_transition(
    current_status: TaskStatus,
    new_status: TaskStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> None:
    """Raise ``InvalidTransition`` unless ``validate_transition`` allows it."""
    result = validate_transition(current_status, new_status, actor_type)
    if not result.allowed:
        raise InvalidTransition(
            current_status.value,
            new_status.value,
            reason=result.reason,
        )


def get_valid_transitions(
    current_status: TaskStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[TaskStatus]:
    """Statuses the given actor can move the task to next.

    Useful for UI hints (e.g. showing available actions to the user).
    """
    candidates = VALID_TRANSITIONS.get(current_status, set())
    valid = [
        target
        for target in candidates
        if validate_transition(current_status, target, actor_type).allowed
    ]
    return sorted(valid, key=lambda s: s.value)


def can_reschedule(current_status: TaskStatus) -> bool:
    return current_status in RESCHEDULABLE_STATUSES
