"""
Pytest fixtures for testing.

Provides:
- Async database session on an in-memory SQLite engine
- Settings reset between tests
- Factory fixtures for users, organizations and posts
- Statement counter for cache tests
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rolekit import registry, reset_settings
from tests.database import TEST_DATABASE_URL, enable_sqlite_savepoints
from tests.models import HOOK_CALLS, Base, Organization, Post, User


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh settings and hook log for every test."""
    reset_settings()
    HOOK_CALLS.clear()
    hooks = registry.hooks_for(User)
    yield
    registry.set_hooks(
        User,
        before_add=hooks.before_add,
        after_add=hooks.after_add,
        before_remove=hooks.before_remove,
        after_remove=hooks.after_remove,
    )
    reset_settings()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create database session with automatic rollback.

    Each test gets a fresh transaction that's rolled back after.
    """
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


class StatementCounter:
    """Counts SQL statements sent to the database."""

    def __init__(self, engine):
        self.engine = engine
        self.count = 0
        event.listen(engine.sync_engine, "before_cursor_execute", self._on_execute)

    def _on_execute(self, conn, cursor, statement, parameters, context, executemany):
        self.count += 1

    def reset(self) -> None:
        self.count = 0

    def close(self) -> None:
        event.remove(self.engine.sync_engine, "before_cursor_execute", self._on_execute)


@pytest.fixture
def statements(db_engine):
    counter = StatementCounter(db_engine)
    yield counter
    counter.close()


# ============ Factory Fixtures ============


class Factory:
    """Creates test rows and flushes them so they get ids."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def user(self, name: str = "Test User") -> User:
        return await self._add(User(name=name))

    async def organization(self, name: str = "Acme") -> Organization:
        return await self._add(Organization(name=name))

    async def post(self, title: str = "Hello") -> Post:
        return await self._add(Post(title=title))


@pytest_asyncio.fixture
async def factory(db: AsyncSession) -> Factory:
    """Fixture that provides the row factory."""
    return Factory(db)


@pytest_asyncio.fixture
async def user(factory: Factory) -> User:
    """Create a standard test user."""
    return await factory.user("alice")


@pytest_asyncio.fixture
async def other_user(factory: Factory) -> User:
    return await factory.user("bob")


@pytest_asyncio.fixture
async def organization(factory: Factory) -> Organization:
    return await factory.organization("Acme")
