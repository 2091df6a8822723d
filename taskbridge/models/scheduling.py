"""
SQLAlchemy models for availability_schedules, time_slots and bookings.

Only ``bookingService`` may flip ``TimeSlot.is_available`` / ``is_booked``.
"""

import enum
import uuid
import datetime as dt
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    SmallInteger,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_values


class BookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"


# Bookings in these statuses hold their time slot.
ACTIVE_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.RESCHEDULED,
})


class AvailabilitySchedule(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Weekly recurring availability window (0=Sunday .. 6=Saturday)."""

    __tablename__ = "availability_schedules"

    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySchedule(provider={self.provider_id}, "
            f"day={self.day_of_week}, {self.start_time}-{self.end_time})>"
        )


class TimeSlot(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "time_slots"

    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_booked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint(
            "provider_id",
            "date",
            "start_time",
            "end_time",
            name="uq_time_slots_provider_window",
        ),
        Index("ix_time_slots_provider_date", "provider_id", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<TimeSlot(provider={self.provider_id}, {self.date} "
            f"{self.start_time}-{self.end_time}, available={self.is_available}, "
            f"booked={self.is_booked})>"
        )


class Booking(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "bookings"

    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tasks.id", ondelete="RESTRICT"), nullable=False
    )
    time_slot_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("time_slots.id", ondelete="SET NULL"), nullable=True
    )

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(
            BookingStatus,
            name="booking_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=BookingStatus.CONFIRMED,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    task: Mapped["Task"] = relationship("Task", back_populates="bookings")
    time_slot: Mapped[Optional["TimeSlot"]] = relationship("TimeSlot")

    __table_args__ = (
        Index("ix_bookings_provider_date", "provider_id", "date"),
        Index("ix_bookings_task", "task_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, task={self.task_id}, {self.date} "
            f"{self.start_time}-{self.end_time}, status={self.status})>"
        )
