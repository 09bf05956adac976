"""Shared test fixtures.

Provides:
- In-memory SQLite engine (aiosqlite) with every connector table created
- session_factory bound to that engine, shaped like core.database.get_session
- MirrorRepository / UpsertEngine / EntityRegistry wired on top of it
- count_rows helper counting mirror rows per sf_id
- InMemoryTokenStore test double for credential tests
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.sfmirror.core.database import init_db
from src.sfmirror.entities.registry import ENTITY_CONFIGS, EntityRegistry
from src.sfmirror.mirror.models import MIRROR_TABLES
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.mirror.upsert import UpsertEngine
from src.sfmirror.salesforce.auth import StoredToken, TokenStore


class InMemoryTokenStore(TokenStore):
    """TokenStore double holding at most one token."""

    def __init__(self, token: StoredToken | None = None) -> None:
        self.token = token
        self.replace_calls = 0

    async def get(self) -> StoredToken | None:
        return self.token

    async def replace(self, token: StoredToken) -> None:
        self.replace_calls += 1
        self.token = token


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test, shared by all sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(sqlite_engine, expire_on_commit=False) as session:
            yield session

    return _factory


@pytest.fixture
def registry() -> EntityRegistry:
    """Registry with the static enabled defaults (no settings override)."""
    return EntityRegistry(ENTITY_CONFIGS.values())


@pytest.fixture
def repository(session_factory) -> MirrorRepository:
    return MirrorRepository(session_factory=session_factory)


@pytest.fixture
def upsert_engine(repository, registry) -> UpsertEngine:
    return UpsertEngine(repository, registry)


@pytest.fixture
def count_rows(sqlite_engine):
    """Count mirror rows carrying an sf_id (0 or 1 when the store is healthy)."""

    async def _count(table_name: str, sf_id: str) -> int:
        table = MIRROR_TABLES[table_name]
        async with AsyncSession(sqlite_engine) as session:
            result = await session.execute(
                select(func.count()).select_from(table).where(table.c.sf_id == sf_id)
            )
            return int(result.scalar_one())

    return _count
