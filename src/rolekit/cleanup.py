"""Expired assignment sweep."""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete, exists
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.registry import registry
from rolekit.timezone import to_utc, utc_now

logger = structlog.get_logger()


class Cleanup:
    """
    Bulk-deletes assignments whose expires_at has passed.

    One DELETE statement: no audit rows are written and no per-row orphan
    check runs. Roles left without assignments are removed by
    remove_orphaned_roles(), on request. Schedule it with
    rolekit.tasks.cleanup_expired_assignments or call it directly.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def run(
        self,
        now: Optional[datetime] = None,
        remove_orphans: bool = False,
    ) -> dict[str, int]:
        """
        Delete expired assignments.

        Args:
            now: Cutoff (default: current time); expires_at <= now is expired
            remove_orphans: Also run remove_orphaned_roles() afterwards

        Returns:
            {"deleted": n}, plus "orphaned_roles" when remove_orphans is set
        """
        assignment_class = registry.assignment_class
        now = to_utc(now) if now else utc_now()

        result = await self.db.execute(
            delete(assignment_class)
            .where(assignment_class.expires_at.is_not(None))
            .where(assignment_class.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0

        logger.info("Expired assignments removed", deleted=deleted)
        summary = {"deleted": deleted}
        if remove_orphans:
            summary["orphaned_roles"] = await self.remove_orphaned_roles()
        return summary

    async def remove_orphaned_roles(self) -> int:
        """
        Delete every role no assignment references, with its permissions.

        Roles kept only as permission templates have no assignments either,
        so this pass is opt-in.
        """
        role_class = registry.role_class
        assignment_class = registry.assignment_class

        result = await self.db.execute(
            delete(role_class)
            .where(~exists().where(assignment_class.role_id == role_class.id).correlate(role_class))
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount or 0

        # Stores without ON DELETE CASCADE keep the permission rows
        permission_class = registry.permission_class
        if removed and permission_class is not None:
            await self.db.execute(
                delete(permission_class)
                .where(~exists().where(role_class.id == permission_class.role_id).correlate(permission_class))
                .execution_options(synchronize_session=False)
            )

        logger.info("Orphaned roles removed", count=removed)
        return removed
