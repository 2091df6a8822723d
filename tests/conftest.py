"""
Shared pytest fixtures for TaskBridge unit tests.

Provides transient (session-less) ORM objects so pure logic can be tested
without a database.
"""

import uuid
from datetime import date, datetime, time
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskbridge.models.scheduling import Booking, BookingStatus
from taskbridge.models.task import Task, TaskStatus, TaskUrgency
from taskbridge.models.verification import VerificationStep, VerificationStepStatus
from taskbridge.services.verificationRegistry import get_step_definition


CLIENT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
PROVIDER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession`` for code that only commits/rolls back."""
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


# ---------------------------------------------------------------------------
# Verification steps
# ---------------------------------------------------------------------------


def build_step(
    key: str,
    status: VerificationStepStatus = VerificationStepStatus.APPROVED,
    *,
    expires_at: Optional[datetime] = None,
    user_id: uuid.UUID = CLIENT_ID,
) -> VerificationStep:
    definition = get_step_definition(key)
    return VerificationStep(
        id=uuid.uuid4(),
        user_id=user_id,
        step_key=key,
        title=definition.title,
        tier=definition.tier,
        required=definition.required,
        document_type=definition.document_type,
        status=status,
        expires_at=expires_at,
    )


@pytest.fixture
def make_step():
    """Factory for transient ``VerificationStep`` rows."""
    return build_step


# ---------------------------------------------------------------------------
# Tasks & bookings
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_task() -> Task:
    """A task accepted by ``PROVIDER_ID`` and waiting to start."""
    return Task(
        id=uuid.uuid4(),
        client_id=CLIENT_ID,
        provider_id=PROVIDER_ID,
        title="Fix leaking kitchen tap",
        address="12 Harbour Street",
        budget_min=40,
        budget_max=80,
        status=TaskStatus.APPLICATIONS,
        urgency=TaskUrgency.NORMAL,
    )


@pytest.fixture
def sample_booking(sample_task: Task) -> Booking:
    return Booking(
        id=uuid.uuid4(),
        provider_id=PROVIDER_ID,
        client_id=CLIENT_ID,
        task_id=sample_task.id,
        time_slot_id=uuid.uuid4(),
        date=date(2025, 7, 20),
        start_time=time(9, 0),
        end_time=time(11, 0),
        status=BookingStatus.CONFIRMED,
    )
