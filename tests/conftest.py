"""
Shared test fixtures for the punch clock test suite.

Every test gets its own in-memory database (aiosqlite + StaticPool) and its
own in-process change feed, wired into the app via dependency overrides.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["REALTIME_BACKEND"] = "memory"
os.environ["TIMEZONE_OFFSET"] = "+00:00"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.deps import (get_change_feed, get_current_active_employee,
                             get_db, get_store, require_admin)
from app.api.v1.endpoints.auth import limiter
from app.db.base import Base
from app.main import app
from app.models.attendance import AttendanceRecord
from app.models.employee import Employee
from app.realtime.feed import LocalChangeFeed
from app.services.attendance_store import AttendanceStore


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def change_feed() -> AsyncGenerator[LocalChangeFeed, None]:
    feed = LocalChangeFeed()
    yield feed
    await feed.close()


@pytest.fixture
def store(session_factory, change_feed) -> AttendanceStore:
    return AttendanceStore(session_factory, change_feed)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


async def _add_employee(session_factory, **fields) -> Employee:
    fields.setdefault("hashed_password", "not-a-real-hash")
    async with session_factory() as session:
        emp = Employee(**fields)
        session.add(emp)
        await session.commit()
        await session.refresh(emp)
        return emp


@pytest.fixture
def make_employee(session_factory):
    async def _make(**fields) -> Employee:
        return await _add_employee(session_factory, **fields)

    return _make


@pytest.fixture
async def employee(session_factory) -> Employee:
    """The signed-in employee every overridden auth dependency returns."""
    return await _add_employee(
        session_factory, id=1, email="alice@example.com", full_name="Alice Smith", role="admin"
    )


@pytest.fixture
async def other_employee(session_factory) -> Employee:
    return await _add_employee(
        session_factory, id=2, email="bob@example.com", full_name="Bob Jones"
    )


@pytest.fixture
def add_record(session_factory):
    """Insert an attendance row directly, bypassing the store and the feed."""

    async def _add(**fields) -> AttendanceRecord:
        async with session_factory() as session:
            record = AttendanceRecord(**fields)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    return _add


def _install_overrides(session_factory, change_feed) -> None:
    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _override_get_store() -> AttendanceStore:
        return AttendanceStore(session_factory, change_feed)

    async def _override_get_change_feed() -> LocalChangeFeed:
        return change_feed

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_store] = _override_get_store
    app.dependency_overrides[get_change_feed] = _override_get_change_feed
    limiter.reset()


@pytest.fixture
async def async_client(session_factory, change_feed, employee) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the app, signed in as ``employee`` (admin)."""
    _install_overrides(session_factory, change_feed)

    async def _override_current() -> Employee:
        return employee

    app.dependency_overrides[get_current_active_employee] = _override_current
    app.dependency_overrides[require_admin] = _override_current

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def anon_client(session_factory, change_feed) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient with real authentication dependencies."""
    _install_overrides(session_factory, change_feed)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
