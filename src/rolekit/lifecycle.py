"""
Assignment lifecycle.

Every assignment goes created -> [updated]* -> destroyed, and each
transition runs its side effects synchronously, in the caller's
transaction:

    created    -> audit INSERT
    updated    -> audit UPDATE
    destroyed  -> audit DELETE, then orphan cleanup of the role

Orphan cleanup removes the role once no assignment references it. It is
skipped when the assignment is destroyed because its role is being
destroyed, so the role is never deleted twice.
"""

from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.audit import AuditRecorder
from rolekit.models.mixins import AuditOperation
from rolekit.registry import registry
from rolekit.timezone import to_utc

logger = structlog.get_logger()


class AssignmentLifecycle:
    """Creates, updates and destroys assignments with their side effects."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditRecorder(db)

    async def create(
        self,
        actor: Any,
        role: Any,
        expires_at: Optional[datetime] = None,
        meta: Optional[dict] = None,
    ) -> Any:
        """Insert an assignment of role to actor."""
        assignment_class = registry.assignment_class
        assignment = assignment_class(
            actor_id=actor.id,
            role_id=role.id,
            expires_at=to_utc(expires_at),
            meta=meta,
        )
        self.db.add(assignment)
        await self.db.flush()

        await self.audit.record(assignment, AuditOperation.INSERT)
        return assignment

    async def update(self, assignment: Any, **changes: Any) -> bool:
        """
        Apply changes to an assignment.

        Only expires_at and meta can change. Returns False (and writes no
        audit row) when nothing actually changed.
        """
        unknown = set(changes) - {"expires_at", "meta"}
        if unknown:
            raise ValueError(f"Cannot update assignment fields: {sorted(unknown)}")

        if "expires_at" in changes:
            changes["expires_at"] = to_utc(changes["expires_at"])

        changed = False
        for field, value in changes.items():
            current = getattr(assignment, field)
            if field == "expires_at":
                current = to_utc(current)
            if current != value:
                setattr(assignment, field, value)
                changed = True

        if not changed:
            return False

        await self.db.flush()
        await self.audit.record(assignment, AuditOperation.UPDATE)
        return True

    async def destroy(self, assignment: Any, *, via_role: bool = False) -> None:
        """
        Delete an assignment.

        Args:
            assignment: Assignment to delete
            via_role: True when the owning role is itself being destroyed;
                skips the orphan check
        """
        await self.db.delete(assignment)
        await self.db.flush()

        await self.audit.record(assignment, AuditOperation.DELETE)

        if not via_role:
            await self.remove_orphaned_role(assignment.role_id)

    async def destroy_all(self, assignments: list[Any], *, via_role: bool = False) -> int:
        for assignment in assignments:
            await self.destroy(assignment, via_role=via_role)
        return len(assignments)

    async def remove_orphaned_role(self, role_id: Any) -> bool:
        """
        Delete the role if no assignment references it.

        The check and the delete are one statement, so an assignment
        inserted concurrently for the same role keeps it alive.
        """
        role_class = registry.role_class
        assignment_class = registry.assignment_class

        still_assigned = exists().where(assignment_class.role_id == role_id)
        stmt = (
            delete(role_class)
            .where(role_class.id == role_id)
            .where(~still_assigned)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if not result.rowcount:
            return False

        # Drop the stale instance so later lookups go to the store
        stale = await self.db.get(role_class, role_id)
        if stale is not None:
            self.db.expunge(stale)

        await self._delete_permissions(role_id)
        logger.info("Orphaned role removed", role_id=str(role_id))
        return True

    async def destroy_role(self, role: Any) -> int:
        """
        Destroy a role and everything hanging off it.

        Each assignment goes through destroy(via_role=True) so it is
        audited; the orphan check is skipped. Returns the number of
        assignments removed.
        """
        assignment_class = registry.assignment_class
        result = await self.db.execute(
            select(assignment_class).where(assignment_class.role_id == role.id)
        )
        assignments = list(result.scalars().all())
        count = await self.destroy_all(assignments, via_role=True)

        await self._delete_permissions(role.id)
        await self.db.delete(role)
        await self.db.flush()

        logger.info("Role destroyed", role=role.name, assignments=count)
        return count

    async def _delete_permissions(self, role_id: Any) -> None:
        permission_class = registry.permission_class
        if permission_class is None:
            return
        await self.db.execute(
            delete(permission_class)
            .where(permission_class.role_id == role_id)
            .execution_options(synchronize_session=False)
        )
