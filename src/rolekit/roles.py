"""
Role repository - lookup-or-create, destroy, permissions.

Usage:
    repo = RoleRepository(db)

    editor = await repo.find_or_create("editor")
    await repo.grant_permission(editor, "posts.update")

    manager = await repo.find_or_create("manager", organization)
"""

from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.config import get_settings
from rolekit.lifecycle import AssignmentLifecycle
from rolekit.registry import registry
from rolekit.scope import RoleScope, ScopeKind

logger = structlog.get_logger()


class RoleRepository:
    """Data access for roles and their permissions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def model(self) -> type:
        return registry.role_class

    # ============================================================
    # ROLES
    # ============================================================

    async def get(self, role_id: Any) -> Optional[Any]:
        return await self.db.get(self.model, role_id)

    async def find(self, name: str, resource: Any = None) -> Optional[Any]:
        """Find the role with this name in exactly this scope."""
        scope = RoleScope.of(resource)
        if scope.kind is ScopeKind.ANY:
            raise ValueError("find() needs a concrete scope; use find_all() for ANY")
        result = await self.db.execute(
            select(self.model)
            .where(self.model.name == str(name))
            .where(*scope.criteria(self.model))
        )
        return result.scalar_one_or_none()

    async def find_all(self, name: Optional[str] = None, resource: Any = None) -> list[Any]:
        """Roles matching name (if given) and scope."""
        scope = RoleScope.of(resource)
        query = select(self.model).where(*scope.criteria(self.model))
        if name is not None:
            query = query.where(self.model.name == str(name))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_or_create(self, name: str, resource: Any = None) -> Any:
        """
        Get the role for (name, scope), creating it on first use.

        The insert runs in a savepoint. If a concurrent caller created the
        same role first, the unique index rejects ours and the existing
        row is read back instead.

        Raises:
            ValueError: name is None or empty
        """
        if name is None or not str(name).strip():
            raise ValueError("Role name must not be empty")

        scope = RoleScope.of(resource)
        role = await self.find(name, scope)
        if role is not None:
            return role

        try:
            async with self.db.begin_nested():
                role = self.model(name=str(name), **scope.values())
                self.db.add(role)
        except IntegrityError:
            logger.info(
                "Role lookup retried after conflict",
                role=str(name),
                resource_type=scope.resource_type,
                resource_id=scope.resource_id,
            )
            role = await self.find(name, scope)
            if role is None:
                raise
        return role

    async def destroy(self, role: Any) -> int:
        """
        Destroy a role with its assignments and permissions.

        Returns the number of assignments removed.
        """
        return await AssignmentLifecycle(self.db).destroy_role(role)

    async def resource_of(self, role: Any) -> Optional[Any]:
        """
        Load the resource a role is scoped to.

        Returns None for global roles; the resource class for class-scoped
        roles; the instance (or None if it is gone) otherwise.
        """
        if role.resource_type is None:
            return None
        resource_class = registry.resolve_resource(role.resource_type)
        if resource_class is None:
            return None
        if role.resource_id is None:
            return resource_class
        return await self.db.get(resource_class, coerce_resource_id(resource_class, role.resource_id))

    # ============================================================
    # PERMISSIONS
    # ============================================================

    async def grant_permission(
        self,
        role: Any,
        action: str,
        conditions: Optional[dict] = None,
    ) -> Any:
        """Add a permission to a role (no-op if the role already has it)."""
        permission_class = registry.require(get_settings().permission_type)
        result = await self.db.execute(
            select(permission_class)
            .where(permission_class.role_id == role.id)
            .where(permission_class.action == str(action))
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            permission = permission_class(role_id=role.id, action=str(action), conditions=conditions)
            self.db.add(permission)
            await self.db.flush()
        return permission

    async def revoke_permission(self, role: Any, action: str) -> bool:
        """Remove a permission from a role."""
        permission_class = registry.require(get_settings().permission_type)
        result = await self.db.execute(
            select(permission_class)
            .where(permission_class.role_id == role.id)
            .where(permission_class.action == str(action))
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            return False
        await self.db.delete(permission)
        await self.db.flush()
        return True

    async def permissions_of(self, role: Any) -> list[str]:
        """Actions granted by a role."""
        permission_class = registry.permission_class
        if permission_class is None:
            return []
        result = await self.db.execute(
            select(permission_class.action)
            .where(permission_class.role_id == role.id)
            .order_by(permission_class.action)
        )
        return list(result.scalars().all())


def coerce_resource_id(resource_class: type, value: str) -> Any:
    """Convert a stored resource_id string back to the resource's key type."""
    try:
        python_type = resource_class.__table__.c.id.type.python_type
    except (AttributeError, NotImplementedError):
        return value
    if isinstance(value, python_type):
        return value
    return python_type(value)
