"""
SQLAlchemy models for verification_steps and trust_profiles.

``TrustProfile`` is a projection: its score and tier are rewritten only by
the recompute path in ``verificationService`` and never set directly.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_values


class VerificationStepStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationTier(str, enum.Enum):
    BASIC = "basic"
    GOVERNMENT = "government"
    ENHANCED = "enhanced"
    COMMUNITY = "community"


class VerificationStep(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "verification_steps"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Registry snapshot
    step_key: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    tier: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Review state
    status: Mapped[VerificationStepStatus] = mapped_column(
        Enum(
            VerificationStepStatus,
            name="verification_step_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=VerificationStepStatus.PENDING,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    document_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "step_key", name="uq_verification_steps_user_step"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationStep(user={self.user_id}, key={self.step_key}, "
            f"tier={self.tier}, status={self.status})>"
        )


class TrustProfile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "trust_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    trust_score: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    verification_tier: Mapped[VerificationTier] = mapped_column(
        Enum(
            VerificationTier,
            name="verification_tier",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=VerificationTier.BASIC,
    )
    computed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<TrustProfile(user={self.user_id}, score={self.trust_score}, "
            f"tier={self.verification_tier})>"
        )
