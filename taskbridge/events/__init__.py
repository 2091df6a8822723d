from .dispatcher import (
    EventBus,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    TaskViewProjection,
    commit_and_publish,
    publish_events,
)
from .taskEvents import DomainEvent, EventKind

__all__ = [
    "DomainEvent",
    "EventBus",
    "EventKind",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "TaskViewProjection",
    "commit_and_publish",
    "publish_events",
]
