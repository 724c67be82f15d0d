"""
Celery tasks.

Add the sweep to the host's beat schedule:

    from rolekit.tasks import BEAT_SCHEDULE

    app.conf.beat_schedule = {**app.conf.beat_schedule, **BEAT_SCHEDULE}

The task connects with ROLEKIT_DATABASE_URL (an async driver URL, e.g.
postgresql+asyncpg://...). The host's models must be imported, and so
registered, in the worker process.
"""

import asyncio
from typing import Optional

import structlog
from celery import shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rolekit.cleanup import Cleanup
from rolekit.config import get_settings
from rolekit.exceptions import RoleKitError

logger = structlog.get_logger()

BEAT_SCHEDULE = {
    "rolekit-cleanup-expired-assignments": {
        "task": "rolekit.tasks.cleanup_expired_assignments",
        "schedule": 3600.0,  # Every hour
    },
}


async def _sweep(database_url: str, remove_orphans: bool = False) -> dict[str, int]:
    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as db:
            async with db.begin():
                return await Cleanup(db).run(remove_orphans=remove_orphans)
    finally:
        await engine.dispose()


@shared_task(name="rolekit.tasks.cleanup_expired_assignments")
def cleanup_expired_assignments(
    database_url: Optional[str] = None,
    remove_orphans: Optional[bool] = None,
):
    """
    Delete expired role assignments.

    With remove_orphans (default: ROLEKIT_CLEANUP_REMOVE_ORPHANED_ROLES),
    roles left without assignments are deleted too.
    """
    settings = get_settings()
    database_url = database_url or settings.database_url
    if remove_orphans is None:
        remove_orphans = settings.cleanup_remove_orphaned_roles
    if not database_url:
        raise RoleKitError("ROLEKIT_DATABASE_URL is not set")

    logger.info("Running expired assignment cleanup...")
    result = asyncio.run(_sweep(database_url, remove_orphans))
    return {"status": "completed", **result}
