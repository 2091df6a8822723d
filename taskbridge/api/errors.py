"""
Translation of domain errors into HTTP responses.

Bodies keep the error's machine-readable ``code`` under ``detail`` so that
clients can tell a lost slot race from an illegal task transition.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from taskbridge.core.errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PersistenceFailure,
    TaskAccessDenied,
    TaskBridgeError,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[TaskBridgeError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (TaskAccessDenied, status.HTTP_403_FORBIDDEN),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: TaskBridgeError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def http_error(exc: TaskBridgeError) -> HTTPException:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Request failed: %s", exc, exc_info=exc)
    return HTTPException(status_code=status_code, detail=exc.to_dict())
