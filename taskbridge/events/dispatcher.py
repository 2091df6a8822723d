"""
Notification dispatch contract.

Delivery (in-app rows, push) belongs to an external collaborator that
implements ``NotificationDispatcher``. The core hands it events only after
the state change has been committed; a dispatch failure is logged and
never rolls back or retries the committed change.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskbridge.core.errors import PersistenceFailure
from taskbridge.events.taskEvents import DomainEvent, EventKind

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


class NotificationDispatcher(Protocol):
    async def dispatch(self, event: DomainEvent) -> None: ...


class LoggingNotificationDispatcher:
    """Default sink: records the intent in the application log."""

    async def dispatch(self, event: DomainEvent) -> None:
        logger.info(
            "Notification intent: %s -> user %s (task=%s)",
            event.kind.value,
            event.user_id,
            event.task_id,
        )


class EventBus:
    """Fans each event out to every subscriber.

    Subscribers may be plain or async callables. A failing subscriber is
    logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._subscribers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers.remove(handler)

    async def dispatch(self, event: DomainEvent) -> None:
        for handler in list(self._subscribers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Event subscriber %r failed for %s", handler, event.kind.value
                )


async def publish_events(
    dispatcher: NotificationDispatcher,
    events: Iterable[DomainEvent],
) -> int:
    """Dispatch events one by one; returns how many were delivered."""
    delivered = 0
    for event in events:
        try:
            await dispatcher.dispatch(event)
        except Exception:
            logger.exception(
                "Notification dispatch failed: %s -> user %s (task=%s)",
                event.kind.value,
                event.user_id,
                event.task_id,
            )
            continue
        delivered += 1
    return delivered


async def commit_and_publish(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    events: Iterable[DomainEvent],
) -> int:
    """Commit the unit of work, then hand its events to the dispatcher."""
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceFailure("Could not commit the state change.", cause=exc) from exc
    return await publish_events(dispatcher, events)


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[EventKind, str] = {
    EventKind.TASK_POSTED: "posted",
    EventKind.TASK_ACCEPTED: "applications",
    EventKind.TASK_DECLINED: "cancelled",
    EventKind.TASK_CANCELLED: "cancelled",
    EventKind.TASK_STARTED: "in_progress",
    EventKind.TASK_COMPLETED: "completed",
}


@dataclass
class TaskView:
    task_id: uuid.UUID
    status: Optional[str] = None
    provider_id: Optional[str] = None
    window: Optional[dict[str, Any]] = None
    history: list[str] = field(default_factory=list)


class TaskViewProjection:
    """Re-derives a per-task view from lifecycle events.

    Subscribe an instance to an ``EventBus``. Events addressed to several
    recipients are applied idempotently.
    """

    def __init__(self) -> None:
        self.views: dict[uuid.UUID, TaskView] = {}

    def __call__(self, event: DomainEvent) -> None:
        if event.task_id is None:
            return
        view = self.views.setdefault(event.task_id, TaskView(task_id=event.task_id))

        status = _STATUS_BY_KIND.get(event.kind)
        if status is not None and status != view.status:
            view.status = status
            view.history.append(status)

        if event.kind == EventKind.TASK_ACCEPTED:
            view.provider_id = event.payload.get("provider_id")

        if event.kind in (EventKind.TASK_ACCEPTED, EventKind.TASK_RESCHEDULED):
            view.window = {
                key: event.payload[key]
                for key in ("booking_id", "date", "start_time", "end_time")
                if key in event.payload
            }
        elif event.kind in (EventKind.TASK_CANCELLED, EventKind.TASK_DECLINED):
            view.window = None

    def get(self, task_id: uuid.UUID) -> Optional[TaskView]:
        return self.views.get(task_id)
