"""
Task API Routes
===============

REST endpoints for the task lifecycle.

Routes:
  POST   /api/v1/tasks                             -- Create a task (draft or posted)
  GET    /api/v1/tasks/client/{client_id}          -- Tasks by client (paginated)
  GET    /api/v1/tasks/provider/{provider_id}      -- Tasks by provider (paginated)
  GET    /api/v1/tasks/{task_id}                   -- Task detail with bookings
  GET    /api/v1/tasks/{task_id}/transitions       -- Next statuses for an actor
  POST   /api/v1/tasks/{task_id}/publish           -- draft -> posted
  POST   /api/v1/tasks/{task_id}/accept            -- Provider accepts, books a slot
  POST   /api/v1/tasks/{task_id}/decline           -- Provider declines
  POST   /api/v1/tasks/{task_id}/start             -- Client authorizes start
  POST   /api/v1/tasks/{task_id}/complete          -- Mark completed
  POST   /api/v1/tasks/{task_id}/cancel            -- Cancel, releasing the slot
  POST   /api/v1/tasks/{task_id}/reschedule        -- Move the booking
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskbridge.api.deps import DBSession, Dispatcher
from taskbridge.api.errors import http_error
from taskbridge.api.schemas.scheduling import BookingOut
from taskbridge.api.schemas.task import (
    PaginationMeta,
    TaskAcceptRequest,
    TaskActorRequest,
    TaskCancelRequest,
    TaskCreateRequest,
    TaskDeclineRequest,
    TaskDetailOut,
    TaskListResponse,
    TaskOut,
    TaskRescheduleRequest,
    TaskTransitionResponse,
    TaskTransitionsOut,
)
from taskbridge.core.config import settings
from taskbridge.core.errors import TaskBridgeError
from taskbridge.events.dispatcher import NotificationDispatcher, commit_and_publish
from taskbridge.models.task import TaskStatus
from taskbridge.services import taskService
from taskbridge.services.taskService import PaginatedResult, TaskTransitionOutcome
from taskbridge.services.taskStateManager import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["Tasks"])


async def _finish(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    outcome: TaskTransitionOutcome,
) -> TaskTransitionResponse:
    """Commit the transition, then hand its events to the dispatcher."""
    try:
        await commit_and_publish(db, dispatcher, outcome.events)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc

    return TaskTransitionResponse(
        task=TaskOut.model_validate(outcome.task),
        booking=BookingOut.model_validate(outcome.booking) if outcome.booking else None,
        events_emitted=len(outcome.events),
    )


def _page(result: PaginatedResult) -> TaskListResponse:
    return TaskListResponse(
        items=[TaskOut.model_validate(t) for t in result.items],
        meta=PaginationMeta(
            page=result.page,
            page_size=result.page_size,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/tasks -- Create a task
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=TaskTransitionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a task",
    description="Creates a task in 'draft', or directly in 'posted' when publish is set.",
)
async def create_task(
    db: DBSession,
    dispatcher: Dispatcher,
    body: TaskCreateRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.create_task(
            db,
            client_id=body.client_id,
            title=body.title,
            description=body.description,
            address=body.address,
            budget_min=body.budget_min,
            budget_max=body.budget_max,
            urgency=body.urgency,
            scheduled_at=body.scheduled_at,
            estimated_duration_minutes=body.estimated_duration_minutes,
            publish=body.publish,
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc

    return await _finish(db, dispatcher, outcome)


# ---------------------------------------------------------------------------
# Paginated lists
# ---------------------------------------------------------------------------
# These parameterized list routes are declared before /{task_id} so that
# "client" / "provider" are never parsed as a UUID.
# ---------------------------------------------------------------------------

@router.get(
    "/client/{client_id}",
    response_model=TaskListResponse,
    summary="List tasks by client",
)
async def list_tasks_by_client(
    db: DBSession,
    client_id: uuid.UUID,
    status_filter: Optional[TaskStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(
        default=settings.default_page_size, ge=1, le=settings.max_page_size
    ),
) -> TaskListResponse:
    result = await taskService.list_tasks_for_client(
        db, client_id, status=status_filter, page=page, page_size=page_size
    )
    return _page(result)


@router.get(
    "/provider/{provider_id}",
    response_model=TaskListResponse,
    summary="List tasks by provider",
)
async def list_tasks_by_provider(
    db: DBSession,
    provider_id: uuid.UUID,
    status_filter: Optional[TaskStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(
        default=settings.default_page_size, ge=1, le=settings.max_page_size
    ),
) -> TaskListResponse:
    result = await taskService.list_tasks_for_provider(
        db, provider_id, status=status_filter, page=page, page_size=page_size
    )
    return _page(result)


# ---------------------------------------------------------------------------
# Single task reads
# ---------------------------------------------------------------------------

@router.get(
    "/{task_id}",
    response_model=TaskDetailOut,
    summary="Get task detail",
)
async def get_task(db: DBSession, task_id: uuid.UUID) -> TaskDetailOut:
    try:
        task = await taskService.get_task(db, task_id)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return TaskDetailOut.model_validate(task)


@router.get(
    "/{task_id}/transitions",
    response_model=TaskTransitionsOut,
    summary="List the statuses an actor can move the task to",
)
async def get_transitions(
    db: DBSession,
    task_id: uuid.UUID,
    actor_type: ActorType = Query(default=ActorType.SYSTEM),
) -> TaskTransitionsOut:
    try:
        task = await taskService.get_task(db, task_id)
        valid = await taskService.get_available_transitions(db, task_id, actor_type)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return TaskTransitionsOut(
        task_id=task.id,
        current_status=task.status,
        actor_type=actor_type,
        valid_transitions=valid,
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@router.post(
    "/{task_id}/publish",
    response_model=TaskTransitionResponse,
    summary="Publish a draft task",
)
async def publish_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskActorRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.publish_task(
            db, task_id, actor_id=body.actor_id, actor_type=body.actor_type
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)


@router.post(
    "/{task_id}/accept",
    response_model=TaskTransitionResponse,
    summary="Accept a posted task and book a slot",
    description=(
        "Reserves the provider's slot for the exact window. Returns 409 with "
        "code 'slot_conflict' or 'slot_unavailable' when the window cannot be "
        "booked, and 'invalid_transition' when the task is no longer posted."
    ),
)
async def accept_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskAcceptRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.accept_task(
            db,
            task_id,
            provider_id=body.provider_id,
            slot_date=body.date,
            start_time=body.start_time,
            end_time=body.end_time,
            actor_type=body.actor_type,
            notes=body.notes,
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)


@router.post(
    "/{task_id}/decline",
    response_model=TaskTransitionResponse,
    summary="Decline a posted task",
)
async def decline_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskDeclineRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.decline_task(
            db,
            task_id,
            provider_id=body.provider_id,
            reason=body.reason,
            actor_type=body.actor_type,
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)


@router.post(
    "/{task_id}/start",
    response_model=TaskTransitionResponse,
    summary="Authorize the start of work",
)
async def start_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskActorRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.start_task(
            db, task_id, actor_id=body.actor_id, actor_type=body.actor_type
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)


@router.post(
    "/{task_id}/complete",
    response_model=TaskTransitionResponse,
    summary="Mark a task completed",
)
async def complete_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskActorRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.complete_task(
            db, task_id, actor_id=body.actor_id, actor_type=body.actor_type
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)


@router.post(
    "/{task_id}/cancel",
    response_model=TaskTransitionResponse,
    summary="Cancel a task",
)
async def cancel_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskCancelRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.cancel_task(
            db,
            task_id,
            actor_id=body.actor_id,
            actor_type=body.actor_type,
            reason=body.reason,
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)


@router.post(
    "/{task_id}/reschedule",
    response_model=TaskTransitionResponse,
    summary="Move a scheduled task to another slot",
)
async def reschedule_task(
    db: DBSession,
    dispatcher: Dispatcher,
    task_id: uuid.UUID,
    body: TaskRescheduleRequest,
) -> TaskTransitionResponse:
    try:
        outcome = await taskService.reschedule_task(
            db,
            task_id,
            actor_id=body.actor_id,
            actor_type=body.actor_type,
            new_date=body.date,
            new_start_time=body.start_time,
            new_end_time=body.end_time,
            reason=body.reason,
        )
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return await _finish(db, dispatcher, outcome)
