"""
Shared FastAPI dependencies for the TaskBridge backend.

Provides the async database session used by all route handlers and the
notification dispatcher that receives events once a request's changes are
committed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskbridge.core.config import settings
from taskbridge.events.dispatcher import (
    EventBus,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time. The session factory
# produces ``AsyncSession`` instances scoped to a single request via
# ``get_db``.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits when the request succeeds and rolls back
    when it raises.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Notification dispatch
# ---------------------------------------------------------------------------

event_bus = EventBus()
event_bus.subscribe(LoggingNotificationDispatcher().dispatch)


def get_dispatcher() -> NotificationDispatcher:
    return event_bus


Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
