"""
E2E test fixtures for the TaskBridge backend.

Provides:
- A fresh in-memory SQLite database per test (aiosqlite, SAVEPOINT-capable)
- An in-process FastAPI test app with all routes registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- A recording notification dispatcher in place of the logging sink
- Helpers for seeding provider slots and creating tasks in various states

The full route -> service -> DB flow is exercised; only notification
delivery is replaced.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Any, AsyncGenerator, Iterable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from taskbridge.events.taskEvents import DomainEvent, EventKind
from taskbridge.models import Base, TimeSlot

# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

CLIENT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
PROVIDER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
OTHER_PROVIDER_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
STRANGER_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")

# 2025-07-20 is a Sunday (day_of_week 0)
SLOT_DATE = date(2025, 7, 20)
MORNING = (time(9, 0), time(11, 0))
LATE_MORNING = (time(11, 0), time(13, 0))
AFTERNOON = (time(13, 0), time(15, 0))

AS_OF = datetime(2025, 7, 20, 8, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Async engine + session (in-memory SQLite)
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def _test_engine():
    """One in-memory database per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # The sqlite driver's implicit transaction handling breaks SAVEPOINT;
    # take over BEGIN ourselves and turn on foreign keys.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(_test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=_test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Notification dispatch
# ---------------------------------------------------------------------------

class RecordingDispatcher:
    """Collects every dispatched event; optionally fails for some kinds."""

    def __init__(self, fail_on: Iterable[EventKind] = ()) -> None:
        self.fail_on = frozenset(fail_on)
        self.events: list[DomainEvent] = []

    async def dispatch(self, event: DomainEvent) -> None:
        if event.kind in self.fail_on:
            raise RuntimeError(f"delivery failed for {event.kind.value}")
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def for_user(self, user_id: uuid.UUID) -> list[DomainEvent]:
        return [e for e in self.events if e.user_id == user_id]


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(db_session_override: AsyncSession, dispatcher_override):
    """Build a FastAPI app with all routes registered and the DB and
    dispatcher dependencies overridden."""
    from fastapi import FastAPI

    from taskbridge.api.deps import get_db, get_dispatcher
    from taskbridge.api.routes.availability import router as availability_router
    from taskbridge.api.routes.tasks import router as tasks_router
    from taskbridge.api.routes.verification import router as verification_router

    app = FastAPI(title="TaskBridge Test")

    async def _override_get_db():
        try:
            yield db_session_override
            await db_session_override.commit()
        except Exception:
            await db_session_override.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher_override

    app.include_router(tasks_router, prefix="/api/v1")
    app.include_router(availability_router, prefix="/api/v1")
    app.include_router(verification_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    dispatcher: RecordingDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(db_session, dispatcher)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

async def seed_slots(
    db: AsyncSession,
    provider_id: uuid.UUID,
    windows: Iterable[tuple[time, time]],
    slot_date: date = SLOT_DATE,
) -> list[TimeSlot]:
    """Insert free slots directly, bypassing template expansion."""
    slots = [
        TimeSlot(
            provider_id=provider_id,
            date=slot_date,
            start_time=start,
            end_time=end,
            is_available=True,
            is_booked=False,
        )
        for start, end in windows
    ]
    db.add_all(slots)
    await db.flush()
    return slots


async def reload(db: AsyncSession, model, row_id: uuid.UUID):
    """Re-read a row from the database, overwriting the identity map copy."""
    stmt = (
        select(model)
        .where(model.id == row_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_task(
    db: AsyncSession,
    *,
    client_id: uuid.UUID = CLIENT_ID,
    title: str = "Assemble wardrobe",
    publish: bool = True,
):
    """Create a task through the service and return it."""
    from taskbridge.services import taskService

    outcome = await taskService.create_task(
        db,
        client_id=client_id,
        title=title,
        address="7 Rue des Lilas",
        budget_min=50,
        budget_max=120,
        publish=publish,
    )
    return outcome.task


async def create_accepted_task(
    db: AsyncSession,
    *,
    provider_id: uuid.UUID = PROVIDER_ID,
    window: tuple[time, time] = MORNING,
    slot_date: date = SLOT_DATE,
):
    """Posted task accepted by ``provider_id`` for ``window``; seeds the slot."""
    from taskbridge.services import taskService

    await seed_slots(db, provider_id, [window], slot_date)
    task = await create_task(db)
    outcome = await taskService.accept_task(
        db,
        task.id,
        provider_id=provider_id,
        slot_date=slot_date,
        start_time=window[0],
        end_time=window[1],
    )
    return outcome.task, outcome.booking


async def create_task_via_api(
    client: AsyncClient,
    *,
    client_id: uuid.UUID = CLIENT_ID,
    publish: bool = True,
    **overrides: Any,
) -> dict[str, Any]:
    """POST to /api/v1/tasks and return the response JSON."""
    payload = {
        "client_id": str(client_id),
        "title": "Mount a TV on drywall",
        "address": "42 Station Road",
        "budget_min": 60,
        "budget_max": 90,
        "publish": publish,
    }
    payload.update(overrides)
    resp = await client.post("/api/v1/tasks", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def accept_via_api(
    client: AsyncClient,
    task_id: str,
    *,
    provider_id: uuid.UUID = PROVIDER_ID,
    window: tuple[time, time] = MORNING,
    slot_date: date = SLOT_DATE,
):
    payload = {
        "provider_id": str(provider_id),
        "date": slot_date.isoformat(),
        "start_time": window[0].strftime("%H:%M"),
        "end_time": window[1].strftime("%H:%M"),
    }
    return await client.post(f"/api/v1/tasks/{task_id}/accept", json=payload)

