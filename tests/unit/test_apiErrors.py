"""
Unit tests for the domain error -> HTTP status mapping.
"""

import uuid
from datetime import date, datetime, time, timezone

import pytest

from taskbridge.api.errors import http_error, status_for
from taskbridge.core.errors import (
    BookingNotFound,
    ConflictError,
    InvalidTransition,
    PersistenceFailure,
    SlotUnavailable,
    StaleVerificationStep,
    TaskAccessDenied,
    TaskBridgeError,
    TaskNotFound,
    ValidationFailure,
)

PROVIDER = uuid.uuid4()


@pytest.mark.parametrize(
    "exc, expected",
    [
        (TaskNotFound(uuid.uuid4()), 404),
        (BookingNotFound(uuid.uuid4()), 404),
        (TaskAccessDenied(uuid.uuid4(), uuid.uuid4()), 403),
        (InvalidTransition("completed", "cancelled"), 409),
        (ConflictError(PROVIDER, date(2025, 7, 20), time(9), time(11)), 409),
        (SlotUnavailable(PROVIDER, date(2025, 7, 20), time(9), time(11)), 409),
        (ValidationFailure("bad budget"), 422),
        (PersistenceFailure("db down"), 503),
        (TaskBridgeError("other"), 400),
    ],
)
def test_status_for(exc, expected):
    assert status_for(exc) == expected


def test_http_error_keeps_code():
    exc = SlotUnavailable(PROVIDER, date(2025, 7, 20), time(9), time(11))
    http_exc = http_error(exc)
    assert http_exc.status_code == 409
    assert http_exc.detail["code"] == "slot_unavailable"
    assert http_exc.detail["start_time"] == "09:00"


def test_invalid_transition_detail():
    detail = InvalidTransition("posted", "applications", reason="Taken.").to_dict()
    assert detail["code"] == "invalid_transition"
    assert detail["current"] == "posted"
    assert detail["attempted"] == "applications"
    assert detail["message"].endswith("Taken.")


def test_stale_step_detail():
    expired = datetime(2025, 10, 18, tzinfo=timezone.utc)
    detail = StaleVerificationStep("address", expired).to_dict()
    assert detail == {
        "code": "stale_verification_step",
        "message": detail["message"],
        "step_key": "address",
        "expired_at": expired.isoformat(),
    }
