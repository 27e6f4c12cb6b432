"""Shared test fixtures and configuration."""

from __future__ import annotations

import asyncio
import datetime as dt
import os
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

os.environ.setdefault("CLAIMFLOW_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CLAIMFLOW_LOG_LEVEL", "WARNING")

from claimflow.config import Settings
from claimflow.database import Base, create_engine, create_session_factory
from claimflow.modules.claims.repository import ClaimRepository, UserRepository
from claimflow.modules.claims.service import WorkflowEngine
from claimflow.modules.notifications.bus import NotificationBus, NotificationEvent
from claimflow.security.rbac import Role, UserIdentity

import claimflow.modules.claims.models  # noqa: F401


class RecordingSubscriber:
    """Collects delivered events; ``arrived`` is set on the first one."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []
        self.arrived = asyncio.Event()

    async def deliver(self, event: NotificationEvent) -> None:
        self.events.append(event)
        self.arrived.set()


class SteppingClock:
    """Deterministic clock, one second per call."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2024, 1, 1, 9, 0, tzinfo=dt.UTC)

    def __call__(self) -> dt.datetime:
        self.now += dt.timedelta(seconds=1)
        return self.now


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Return test settings."""
    return Settings(
        claimflow_env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        claimflow_log_level="WARNING",
        uploads_dir=str(tmp_path / "uploads"),
        _env_file=None,
    )


async def _build_factory(url: str) -> tuple:
    engine = create_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, create_session_factory(engine)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a clean in-memory database for each test."""
    engine, factory = await _build_factory("sqlite+aiosqlite:///:memory:")
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A file-backed database, for tests that need separate connections."""
    engine, factory = await _build_factory(f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}")
    yield factory
    await engine.dispose()


@pytest.fixture
def claims(session_factory) -> ClaimRepository:
    return ClaimRepository(session_factory)


@pytest.fixture
def users(session_factory) -> UserRepository:
    return UserRepository(session_factory)


@pytest_asyncio.fixture
async def bus() -> AsyncGenerator[NotificationBus, None]:
    b = NotificationBus(delivery_timeout=1.0)
    yield b
    await b.close()


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def workflow(claims, bus, clock) -> WorkflowEngine:
    return WorkflowEngine(claims, bus, clock=clock)


@pytest_asyncio.fixture
async def staff_id(users) -> int:
    return await users.add("staff@example.com", "Sam", "Staff")


@pytest_asyncio.fixture
async def admin_id(users) -> int:
    return await users.add("admin@example.com", "Ada", "Admin", role="admin")


@pytest.fixture
def admin(admin_id) -> UserIdentity:
    return UserIdentity(user_id=admin_id, role=Role.ADMIN)


@pytest.fixture
def staff(staff_id) -> UserIdentity:
    return UserIdentity(user_id=staff_id, role=Role.STAFF)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test file operations."""
    return tmp_path
