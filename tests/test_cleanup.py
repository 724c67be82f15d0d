"""
Tests for the expired assignment sweep and its celery task.
"""

import asyncio
from datetime import timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rolekit import (
    ANY,
    AuditRecorder,
    Cleanup,
    Resourceable,
    RoleKitError,
    RoleRepository,
    Roleable,
    configure,
)
from rolekit.tasks import BEAT_SCHEDULE, cleanup_expired_assignments
from rolekit.timezone import utc_now
from tests.database import enable_sqlite_savepoints
from tests.models import Base, Role, RoleAssignment, User


@pytest.mark.asyncio
async def test_cleanup_deletes_expired_assignments(db, user, other_user):
    await Roleable(db, user).add_role("temp", expires_at=utc_now() - timedelta(hours=1))
    await Roleable(db, user).add_role("admin")
    await Roleable(db, other_user).add_role("temp", expires_at=utc_now() + timedelta(days=1))

    result = await Cleanup(db).run()

    assert result == {"deleted": 1}
    remaining = await db.execute(select(func.count()).select_from(RoleAssignment))
    assert remaining.scalar_one() == 2


@pytest.mark.asyncio
async def test_cleanup_skips_hooks_and_orphan_check(db, user):
    await Roleable(db, user).add_role("temp", expires_at=utc_now() - timedelta(hours=1))

    await Cleanup(db).run()

    # Role left in place, only the INSERT was audited
    assert await RoleRepository(db).find("temp") is not None
    entries = await AuditRecorder(db).history(actor_id=user.id)
    assert [entry.operation for entry in entries] == ["INSERT"]


@pytest.mark.asyncio
async def test_cleanup_with_nothing_expired(db, user):
    await Roleable(db, user).add_role("admin")

    assert await Cleanup(db).run() == {"deleted": 0}


@pytest.mark.asyncio
async def test_cleanup_normalizes_cutoff_to_utc(db, user):
    """An aware cutoff in another timezone means the same instant."""
    await Roleable(db, user).add_role("temp", expires_at=utc_now() - timedelta(minutes=30))
    now = utc_now().astimezone(timezone(timedelta(hours=-5)))

    assert await Cleanup(db).run(now=now) == {"deleted": 1}


@pytest.mark.asyncio
async def test_cleanup_removes_orphaned_roles_on_request(db, user, other_user, organization):
    await Roleable(db, user).add_role("manager", organization, expires_at=utc_now() - timedelta(hours=1))
    await Roleable(db, user).add_role("admin")
    await Roleable(db, other_user).add_role("temp", expires_at=utc_now() - timedelta(hours=1))

    result = await Cleanup(db).run(remove_orphans=True)

    assert result == {"deleted": 2, "orphaned_roles": 2}
    org = Resourceable(db, organization)
    assert await org.has_role("manager") is False
    assert await org.available_roles() == []
    assert [r.name for r in await RoleRepository(db).find_all(resource=ANY)] == ["admin"]


@pytest.mark.asyncio
async def test_remove_orphaned_roles_drops_unassigned_roles_and_permissions(db, user):
    repo = RoleRepository(db)
    template = await repo.find_or_create("reviewer")
    await repo.grant_permission(template, "posts.review")
    await Roleable(db, user).add_role("admin")

    assert await Cleanup(db).remove_orphaned_roles() == 1

    assert await repo.find("reviewer") is None
    assert await repo.permissions_of(template) == []
    assert await repo.find("admin") is not None


# ============ Celery task ============


def test_beat_schedule_names_the_task():
    entry = BEAT_SCHEDULE["rolekit-cleanup-expired-assignments"]

    assert entry["task"] == cleanup_expired_assignments.name


def test_task_requires_database_url():
    configure(database_url=None)

    with pytest.raises(RoleKitError):
        cleanup_expired_assignments()


def test_task_sweeps_configured_database(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'rolekit.db'}"

    async def seed():
        engine = create_async_engine(database_url)
        enable_sqlite_savepoints(engine)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            user = User(name="alice")
            db.add(user)
            await db.flush()
            await Roleable(db, user).add_role("temp", expires_at=utc_now() - timedelta(hours=1))
            await Roleable(db, user).add_role("admin")
            await db.commit()
        await engine.dispose()

    async def count():
        engine = create_async_engine(database_url)
        async with engine.connect() as conn:
            result = await conn.execute(select(func.count()).select_from(RoleAssignment))
            total = result.scalar_one()
        await engine.dispose()
        return total

    asyncio.run(seed())
    configure(database_url=database_url)

    result = cleanup_expired_assignments()

    assert result == {"status": "completed", "deleted": 1}
    assert asyncio.run(count()) == 1


def test_task_can_remove_orphaned_roles(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'rolekit.db'}"

    async def seed():
        engine = create_async_engine(database_url)
        enable_sqlite_savepoints(engine)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            user = User(name="alice")
            db.add(user)
            await db.flush()
            await Roleable(db, user).add_role("temp", expires_at=utc_now() - timedelta(hours=1))
            await db.commit()
        await engine.dispose()

    async def role_names():
        engine = create_async_engine(database_url)
        async with engine.connect() as conn:
            result = await conn.execute(select(Role.name))
            names = list(result.scalars().all())
        await engine.dispose()
        return names

    asyncio.run(seed())
    configure(database_url=database_url, cleanup_remove_orphaned_roles=True)

    result = cleanup_expired_assignments()

    assert result == {"status": "completed", "deleted": 1, "orphaned_roles": 1}
    assert asyncio.run(role_names()) == []
