"""Audit trail for assignment lifecycle transitions."""

from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.context import actor_reference
from rolekit.models.mixins import AuditOperation
from rolekit.registry import registry

logger = structlog.get_logger()


class AuditRecorder:
    """
    Writes one immutable audit row per assignment change.

    Audit is a best-effort side channel: the row is written inside a
    savepoint and any failure is logged and discarded, so the role change
    that triggered it always goes through.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, assignment: Any, operation: AuditOperation) -> Optional[Any]:
        """
        Create an audit row for assignment.

        Returns the row, or None when no audit model is registered or the
        write failed.
        """
        audit_class = registry.audit_class
        if audit_class is None:
            return None

        reference = actor_reference()
        try:
            async with self.db.begin_nested():
                entry = audit_class(
                    assignment_id=assignment.id,
                    actor_id=str(assignment.actor_id),
                    role_id=assignment.role_id,
                    operation=operation.value,
                    actor_reference=reference,
                    meta_snapshot=assignment.meta,
                    expires_at_snapshot=assignment.expires_at,
                )
                self.db.add(entry)
        except Exception as e:
            logger.warning(
                "Audit write failed",
                operation=operation.value,
                assignment_id=str(assignment.id),
                error=str(e),
            )
            return None

        logger.debug(
            "Audit record created",
            operation=operation.value,
            assignment_id=str(assignment.id),
            actor_reference=reference,
        )
        return entry

    async def history(
        self,
        *,
        assignment_id: Any = None,
        actor_id: Any = None,
        role_id: Any = None,
        limit: int = 100,
    ) -> list[Any]:
        """List audit rows, newest first, optionally filtered."""
        audit_class = registry.audit_class
        if audit_class is None:
            return []

        query = select(audit_class)
        if assignment_id is not None:
            query = query.where(audit_class.assignment_id == assignment_id)
        if actor_id is not None:
            query = query.where(audit_class.actor_id == str(actor_id))
        if role_id is not None:
            query = query.where(audit_class.role_id == role_id)

        query = query.order_by(audit_class.created_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
