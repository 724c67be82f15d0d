"""
Permission resolution.

An actor's permissions are the union of the actions granted by every
role they currently hold (expired assignments excluded):

    ability = Ability(db, user)
    if await ability.can("posts.update"):
        ...

The set is computed once per Ability and kept until invalidate() is
called. Role changes made after the first lookup are not seen until then.
"""

from typing import Any, Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.registry import registry
from rolekit.timezone import utc_now

logger = structlog.get_logger()


def active_assignment_criteria(assignment_class: type, now=None) -> Any:
    """SQL filter for assignments that have not expired."""
    now = now or utc_now()
    return or_(
        assignment_class.expires_at.is_(None),
        assignment_class.expires_at > now,
    )


class Ability:
    """Memoized permission set for one actor."""

    def __init__(self, db: AsyncSession, actor: Any):
        self.db = db
        self.actor = actor
        self._permissions: Optional[frozenset[str]] = None

    async def permissions(self) -> frozenset[str]:
        """
        All actions granted to the actor.

        Empty when the host registered no permission model.
        """
        if self._permissions is not None:
            return self._permissions

        permission_class = registry.permission_class
        if permission_class is None:
            self._permissions = frozenset()
            return self._permissions

        role_class = registry.role_class
        assignment_class = registry.assignment_class

        query = (
            select(permission_class.action)
            .join(role_class, role_class.id == permission_class.role_id)
            .join(assignment_class, assignment_class.role_id == role_class.id)
            .where(assignment_class.actor_id == self.actor.id)
            .where(active_assignment_criteria(assignment_class))
            .distinct()
        )
        result = await self.db.execute(query)
        self._permissions = frozenset(str(action) for action in result.scalars().all())

        logger.debug(
            "Permissions resolved",
            actor_id=str(self.actor.id),
            count=len(self._permissions),
        )
        return self._permissions

    async def can(self, action: str, resource: Any = None) -> bool:
        """
        Check if the actor has a permission.

        resource is accepted for signature compatibility with policy
        engines and is not used for matching.
        """
        return str(action) in await self.permissions()

    async def cannot(self, action: str, resource: Any = None) -> bool:
        return not await self.can(action, resource)

    def invalidate(self) -> None:
        """Forget the memoized permission set."""
        self._permissions = None
