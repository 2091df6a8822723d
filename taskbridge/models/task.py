"""
SQLAlchemy model for tasks.

Tasks are never deleted; cancellation is a status.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_values


class TaskStatus(str, enum.Enum):
    DRAFT = "draft"
    POSTED = "posted"
    APPLICATIONS = "applications"  # a provider accepted, slot reserved
    SELECTED = "selected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class TaskUrgency(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class Task(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "tasks"

    # Parties
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, nullable=True, index=True
    )

    # Details
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(
            TaskStatus,
            name="task_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=TaskStatus.DRAFT,
    )
    urgency: Mapped[TaskUrgency] = mapped_column(
        Enum(
            TaskUrgency,
            name="task_urgency",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=TaskUrgency.NORMAL,
    )
    address: Mapped[str] = mapped_column(Text, nullable=False)

    # Budget (whole currency units)
    budget_min: Mapped[int] = mapped_column(BigInteger, nullable=False)
    budget_max: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Scheduling
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )

    # Lifecycle stamps
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    bookings: Mapped[list["Booking"]] = relationship(
        "Booking", back_populates="task", order_by="Booking.created_at"
    )

    def __repr__(self) -> str:
        return (
            f"<Task(id={self.id}, status={self.status}, "
            f"client={self.client_id}, provider={self.provider_id})>"
        )
