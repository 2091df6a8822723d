"""
Declarative base and shared mixins for all TaskBridge ORM models.

Column types are kept portable (``Uuid``, non-native enums storing the enum
*values*) so the same metadata can be created on PostgreSQL in production
and on SQLite in the test suite.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )


class TimestampMixin:
    # Stamped client-side so the values are loaded after flush without a
    # refresh (async sessions cannot lazy-load expired attributes).
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """``values_callable`` for ``sqlalchemy.Enum`` so rows store ``"posted"``
    rather than ``"POSTED"``."""
    return [member.value for member in enum_cls]
