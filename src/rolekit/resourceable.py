"""
Resource capability - roles seen from the resource side.

Usage:
    org = Resourceable(db, organization)

    await org.add_role_to_user(user, "manager")
    managers = await org.users_with_role("manager")
    await org.available_roles()                  # ["manager"]

    # Class level
    orgs = ResourceRepository(db, Organization)
    managed = await orgs.with_role("manager", user)

Only roles scoped to this resource instance are considered. Actor queries
skip expired assignments.
"""

from typing import Any, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.ability import active_assignment_criteria
from rolekit.lifecycle import AssignmentLifecycle
from rolekit.registry import registry
from rolekit.roleable import Roleable, flatten_names
from rolekit.roles import coerce_resource_id
from rolekit.scope import RoleScope

logger = structlog.get_logger()


class Resourceable:
    """Role operations for one resource instance."""

    def __init__(self, db: AsyncSession, resource: Any):
        self.db = db
        self.resource = resource
        self.scope = RoleScope.of(resource)

    def _actor_ids(self, names: Optional[list[str]] = None):
        """Active actor ids holding a role on this resource (optionally one of names)."""
        role_class = registry.role_class
        assignment_class = registry.assignment_class

        query = (
            select(assignment_class.actor_id)
            .join(role_class, role_class.id == assignment_class.role_id)
            .where(*self.scope.criteria(role_class))
            .where(active_assignment_criteria(assignment_class))
        )
        if names is not None:
            query = query.where(role_class.name.in_(names))
        return query

    async def _actors(self, ids_query) -> list[Any]:
        actor_class = registry.actor_class
        result = await self.db.execute(
            select(actor_class).where(actor_class.id.in_(ids_query))
        )
        return list(result.scalars().all())

    # ============================================================
    # ACTORS
    # ============================================================

    async def users_with_role(self, role_name: Any) -> list[Any]:
        if role_name is None:
            return []
        return await self._actors(self._actor_ids([str(role_name)]))

    async def users_with_any_role(self, *role_names: Any) -> list[Any]:
        names = flatten_names(role_names)
        if not names:
            return []
        return await self._actors(self._actor_ids(names))

    async def users_with_all_roles(self, *role_names: Any) -> list[Any]:
        """Actors holding every named role on this resource."""
        names = sorted(set(flatten_names(role_names)))
        if not names:
            return []

        role_class = registry.role_class
        assignment_class = registry.assignment_class
        ids = (
            self._actor_ids(names)
            .group_by(assignment_class.actor_id)
            .having(func.count(func.distinct(role_class.name)) == len(names))
        )
        return await self._actors(ids)

    async def users_with_roles(self) -> list[Any]:
        """Actors holding any role at all on this resource."""
        return await self._actors(self._actor_ids())

    async def count_users_with_role(self, role_name: Any) -> int:
        if role_name is None:
            return 0
        result = await self.db.execute(
            select(func.count()).select_from(
                self._actor_ids([str(role_name)]).distinct().subquery()
            )
        )
        return result.scalar_one()

    # ============================================================
    # ROLES
    # ============================================================

    async def applied_roles(self) -> list[Any]:
        """Roles defined on this resource."""
        role_class = registry.role_class
        result = await self.db.execute(
            select(role_class).where(*self.scope.criteria(role_class)).order_by(role_class.name)
        )
        return list(result.scalars().all())

    async def available_roles(self) -> list[str]:
        """Distinct names of roles defined on this resource."""
        role_class = registry.role_class
        result = await self.db.execute(
            select(role_class.name)
            .where(*self.scope.criteria(role_class))
            .distinct()
            .order_by(role_class.name)
        )
        return list(result.scalars().all())

    async def has_role(self, role_name: Any) -> bool:
        """True if a role with this name is defined on this resource."""
        if role_name is None:
            return False
        role_class = registry.role_class
        result = await self.db.execute(
            select(role_class.id)
            .where(role_class.name == str(role_name))
            .where(*self.scope.criteria(role_class))
            .limit(1)
        )
        return result.first() is not None

    async def user_has_role(self, actor: Any, role_name: Any) -> bool:
        if actor is None:
            return False
        return await Roleable(self.db, actor).has_role(role_name, self.resource)

    async def add_role_to_user(self, actor: Any, role_name: Any, **options: Any) -> Any:
        return await Roleable(self.db, actor).add_role(role_name, self.resource, **options)

    async def remove_role_from_user(self, actor: Any, role_name: Any) -> list[Any]:
        return await Roleable(self.db, actor).remove_role(role_name, self.resource)

    async def destroy_roles(self) -> int:
        """
        Destroy every role scoped to this resource.

        Call before deleting the resource. Returns the number of roles
        destroyed.
        """
        roles = await self.applied_roles()
        lifecycle = AssignmentLifecycle(self.db)
        for role in roles:
            await lifecycle.destroy_role(role)
        if roles:
            logger.info(
                "Resource roles destroyed",
                resource_type=self.scope.resource_type,
                resource_id=self.scope.resource_id,
                count=len(roles),
            )
        return len(roles)


class ResourceRepository:
    """Class-level role queries for one resource model."""

    def __init__(self, db: AsyncSession, resource_class: type):
        self.db = db
        self.resource_class = resource_class
        self.type_name = registry.type_name(resource_class)

    async def find_roles(self, role_name: Any = None, actor: Any = None) -> list[Any]:
        """
        Roles on any instance of this resource class (class-scoped ones too).

        Args:
            role_name: Only roles with this name
            actor: Only roles the actor currently holds
        """
        role_class = registry.role_class
        query = select(role_class).where(role_class.resource_type == self.type_name)
        if role_name is not None:
            query = query.where(role_class.name == str(role_name))
        if actor is not None:
            assignment_class = registry.assignment_class
            query = (
                query.join(assignment_class, assignment_class.role_id == role_class.id)
                .where(assignment_class.actor_id == actor.id)
                .where(active_assignment_criteria(assignment_class))
            )
        result = await self.db.execute(query.order_by(role_class.name))
        return list(result.scalars().all())

    def _resource_keys(self, role_name: Any, actor: Any = None):
        role_class = registry.role_class
        query = (
            select(role_class.resource_id)
            .where(role_class.resource_type == self.type_name)
            .where(role_class.resource_id.is_not(None))
            .where(role_class.name == str(role_name))
        )
        if actor is not None:
            assignment_class = registry.assignment_class
            query = (
                query.join(assignment_class, assignment_class.role_id == role_class.id)
                .where(assignment_class.actor_id == actor.id)
                .where(active_assignment_criteria(assignment_class))
            )
        return query.distinct()

    async def _keys(self, role_name: Any, actor: Any = None) -> list[Any]:
        result = await self.db.execute(self._resource_keys(role_name, actor))
        return [coerce_resource_id(self.resource_class, key) for key in result.scalars().all()]

    async def with_role(self, role_name: Any, actor: Any = None) -> list[Any]:
        """Instances that have the role defined on them (held by actor, if given)."""
        if role_name is None:
            return []
        keys = await self._keys(role_name, actor)
        if not keys:
            return []
        result = await self.db.execute(
            select(self.resource_class).where(self.resource_class.id.in_(keys))
        )
        return list(result.scalars().all())

    async def without_role(self, role_name: Any, actor: Any = None) -> list[Any]:
        """Instances not returned by with_role(role_name, actor)."""
        query = select(self.resource_class)
        if role_name is not None:
            keys = await self._keys(role_name, actor)
            if keys:
                query = query.where(self.resource_class.id.not_in(keys))
        result = await self.db.execute(query)
        return list(result.scalars().all())
