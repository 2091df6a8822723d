"""
TaskBridge SQLAlchemy Models
============================

Central import point for all ORM models. Import ``Base`` from here for
``create_all`` in tests and schema tooling.

Usage::

    from taskbridge.models import Base, Task, Booking, TimeSlot
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Verification & Trust --
from .verification import (
    TrustProfile,
    VerificationStep,
    VerificationStepStatus,
    VerificationTier,
)

# -- Tasks --
from .task import Task, TaskStatus, TaskUrgency

# -- Scheduling --
from .scheduling import (
    ACTIVE_BOOKING_STATUSES,
    AvailabilitySchedule,
    Booking,
    BookingStatus,
    TimeSlot,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Verification
    "VerificationStep",
    "VerificationStepStatus",
    "VerificationTier",
    "TrustProfile",
    # Tasks
    "Task",
    "TaskStatus",
    "TaskUrgency",
    # Scheduling
    "AvailabilitySchedule",
    "TimeSlot",
    "Booking",
    "BookingStatus",
    "ACTIVE_BOOKING_STATUSES",
]
