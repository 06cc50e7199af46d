"""Shared test fixtures.

Every test gets its own SQLite file database (aiosqlite). The pool holds a
single connection so concurrent sessions queue on checkout, the same way
writers queue on row locks in PostgreSQL.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cvr.config import Settings
from cvr.database import close_db, get_engine, get_session_factory, init_db
from cvr.db.base import Base
from cvr.db import models  # noqa: F401
from cvr.gamification.orchestrator import CompletionOrchestrator
from cvr.gamification.seed import seed_badges
from cvr.notifications.emitter import NotificationEmitter

# A Tuesday afternoon, UTC
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings() -> Settings:
    return Settings(
        lock_timeout_seconds=5.0,
        notifications_enabled=True,
        badge_retry_enabled=False,
        log_format="console",
    )


@pytest_asyncio.fixture
async def db_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialize a fresh SQLite database with all tables."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'cvr_test.db'}", pool_size=1, max_overflow=0)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(db_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session on the test database. Do not combine with the orchestrator fixture."""
    async with db_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_factory(db_factory) -> async_sessionmaker[AsyncSession]:
    """Test database with the default badge catalog seeded."""
    async with db_factory() as session:
        await seed_badges(session)
        await session.commit()
    return db_factory


@pytest_asyncio.fixture
async def orchestrator(seeded_factory, settings) -> CompletionOrchestrator:
    return CompletionOrchestrator(
        seeded_factory,
        settings=settings,
        emitter=NotificationEmitter(None),
    )
