"""
Pydantic v2 schemas for the task lifecycle API.

Request bodies carry the acting user explicitly (``actor_id`` +
``actor_type``); authentication is handled in front of this service.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from taskbridge.api.schemas.scheduling import BookingOut
from taskbridge.models.task import TaskStatus, TaskUrgency
from taskbridge.services.taskStateManager import ActorType


# ---------------------------------------------------------------------------
# Shared pagination
# ---------------------------------------------------------------------------

class PaginationMeta(BaseModel):
    """Pagination metadata included in every paginated response."""

    page: int = Field(ge=1, description="Current page number (1-indexed)")
    page_size: int = Field(ge=1, description="Number of items per page")
    total_items: int = Field(ge=0, description="Total number of matching items")
    total_pages: int = Field(ge=0, description="Total number of pages")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TaskCreateRequest(BaseModel):
    client_id: uuid.UUID
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    address: str = Field(min_length=1, max_length=500)
    budget_min: int = Field(ge=0, description="Whole currency units")
    budget_max: int = Field(ge=0, description="Whole currency units")
    urgency: TaskUrgency = TaskUrgency.NORMAL
    scheduled_at: Optional[datetime] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, gt=0)
    publish: bool = Field(default=False, description="Post immediately instead of saving a draft")


class TaskActorRequest(BaseModel):
    """Who is acting on the task."""

    actor_id: Optional[uuid.UUID] = Field(
        default=None, description="Required unless actor_type is system or admin"
    )
    actor_type: ActorType


class TaskAcceptRequest(BaseModel):
    provider_id: uuid.UUID
    date: date
    start_time: time
    end_time: time
    notes: Optional[str] = Field(default=None, max_length=1000)
    actor_type: ActorType = ActorType.PROVIDER


class TaskDeclineRequest(BaseModel):
    provider_id: uuid.UUID
    reason: Optional[str] = Field(default=None, max_length=1000)
    actor_type: ActorType = ActorType.PROVIDER


class TaskCancelRequest(TaskActorRequest):
    reason: Optional[str] = Field(default=None, max_length=1000)


class TaskRescheduleRequest(TaskActorRequest):
    date: date
    start_time: time
    end_time: time
    reason: Optional[str] = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    provider_id: Optional[uuid.UUID] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    urgency: TaskUrgency
    address: str
    budget_min: int
    budget_max: int
    scheduled_at: Optional[datetime] = None
    estimated_duration_minutes: Optional[int] = None
    created_at: datetime
    responded_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class TaskDetailOut(TaskOut):
    """Task plus its full booking history (requires ``bookings`` loaded)."""

    bookings: list[BookingOut] = Field(default_factory=list)


class TaskTransitionResponse(BaseModel):
    task: TaskOut
    booking: Optional[BookingOut] = None
    events_emitted: int = 0


class TaskTransitionsOut(BaseModel):
    task_id: uuid.UUID
    current_status: TaskStatus
    actor_type: ActorType
    valid_transitions: list[TaskStatus]


class TaskListResponse(BaseModel):
    items: list[TaskOut]
    meta: PaginationMeta
