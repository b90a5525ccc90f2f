"""Pytest configuration and shared fixtures.

Tests run against a file-backed SQLite database through aiosqlite, with the
schema created from the ORM metadata. Each test gets its own database file.

Environment variables:
    TEST_DATABASE_URL: Use this async database URL instead of SQLite
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pharmapickup.api import create_app
from pharmapickup.api.routers.pickups import get_db_session
from pharmapickup.db.models import Base
from pharmapickup.services.events import LifecycleEvent, LifecycleEventDispatcher
from pharmapickup.services.lifecycle import PickupLifecycleService
from pharmapickup.services.locks import RequestLocks


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------
class FrozenClock:
    """Manually advanced clock for deterministic timestamps."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at Wednesday 2026-10-14 10:00 UTC."""
    return FrozenClock(datetime(2026, 10, 14, 10, 0, tzinfo=UTC))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class RecordingSubscriber:
    """Subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    async def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)


@pytest.fixture
def recorder() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture
def dispatcher(recorder: RecordingSubscriber) -> LifecycleEventDispatcher:
    dispatcher = LifecycleEventDispatcher()
    dispatcher.subscribe(recorder)
    return dispatcher


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def database_url(tmp_path) -> str:
    """Async database URL for the test, SQLite in a temp directory by default."""
    return os.environ.get("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'pickups.db'}")


@pytest.fixture
async def engine(database_url: str):
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks() -> RequestLocks:
    """Lock registry private to the test."""
    return RequestLocks()


@pytest.fixture
def service(session, dispatcher, locks, clock) -> PickupLifecycleService:
    """Lifecycle service on the test session, recording events."""
    return PickupLifecycleService(session, dispatcher, locks=locks, clock=clock)


# ---------------------------------------------------------------------------
# API client fixture (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(session_factory, dispatcher):
    """FastAPI app wired to the test database and recording dispatcher."""
    app = create_app(dispatcher=dispatcher)

    async def _test_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _test_db_session
    return app


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API.

    Uses httpx with ASGI transport for in-process testing.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
