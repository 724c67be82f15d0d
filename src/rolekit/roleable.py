"""
Actor capability - grant, revoke and query an actor's roles.

Usage:
    roles = Roleable(db, user)

    # Global role
    await roles.add_role("admin")
    await roles.has_role("admin")                       # True

    # Scoped to a resource instance, or a resource class
    await roles.add_role("manager", organization)
    await roles.has_role("manager", organization)       # True
    await roles.has_role("manager")                     # False (global only)
    await roles.has_role("manager", ANY)                # True
    await roles.add_role("auditor", Organization)       # class-scoped

    # Temporary, with metadata
    await roles.add_role("approver", expires_at=end_of_quarter, meta={"ticket": "OPS-12"})

    # Revoke
    await roles.remove_role("manager", organization)

    # Shortcuts (pattern from config, default "is_{role}")
    await roles.dispatch("is_admin")                    # has_role("admin")

    # Actors by role
    admins = await ActorRepository(db).with_role("admin")

Writes flush but never commit: the caller owns the transaction.
"""

import inspect
from collections import defaultdict
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rolekit.ability import Ability, active_assignment_criteria
from rolekit.aliases import REPOSITORY_ALIASES, ROLEABLE_ALIASES, AliasMixin
from rolekit.config import get_settings, match_shortcut
from rolekit.exceptions import UnknownOperationError
from rolekit.lifecycle import AssignmentLifecycle
from rolekit.registry import registry
from rolekit.roles import RoleRepository, coerce_resource_id
from rolekit.scope import RoleScope
from rolekit.timezone import utc_now

logger = structlog.get_logger()

# Marks keyword arguments the caller did not pass
_UNSET: Any = object()


def flatten_names(names: Iterable[Any]) -> list[str]:
    """Accept has_all_roles("a", "b") as well as has_all_roles(["a", "b"])."""
    flat: list[str] = []
    for name in names:
        if isinstance(name, (list, tuple, set, frozenset)):
            flat.extend(str(n) for n in name)
        elif name is not None:
            flat.append(str(name))
    return flat


def parse_role_arg(arg: Any) -> tuple[Optional[str], Any]:
    """
    Normalize a role argument of with_any_role / with_all_roles.

    Accepts "name", {"name": ..., "resource": ...} or (name, resource).
    """
    if isinstance(arg, Mapping):
        return arg.get("name"), arg.get("resource")
    if isinstance(arg, tuple):
        if len(arg) == 1:
            return arg[0], None
        return arg[0], arg[1]
    return arg, None


class Roleable(AliasMixin):
    """
    Role operations for one actor.

    Holds two per-instance caches, both cleared by invalidate():
    the preloaded (assignment, role) pairs used by has_cached_role(), and
    the Ability whose permission set is memoized.
    """

    alias_templates = ROLEABLE_ALIASES

    def __init__(self, db: AsyncSession, actor: Any):
        self.db = db
        self.actor = actor
        self._cached: Optional[list[tuple[Any, Any]]] = None
        self._ability: Optional[Ability] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} actor={self.actor!r}>"

    # ============================================================
    # QUERIES (live)
    # ============================================================

    def _held_roles(self, include_expired: bool = False):
        role_class = registry.role_class
        assignment_class = registry.assignment_class

        query = (
            select(role_class)
            .join(assignment_class, assignment_class.role_id == role_class.id)
            .where(assignment_class.actor_id == self.actor.id)
        )
        if not include_expired:
            query = query.where(active_assignment_criteria(assignment_class))
        return query

    async def _exists(self, query) -> bool:
        result = await self.db.execute(query.limit(1))
        return result.first() is not None

    async def _holds(self, name: Any, scope: RoleScope) -> bool:
        role_class = registry.role_class
        query = (
            self._held_roles()
            .where(role_class.name == str(name))
            .where(*scope.criteria(role_class))
        )
        return await self._exists(query)

    async def roles(self, include_expired: bool = False) -> list[Any]:
        """Roles the actor holds."""
        role_class = registry.role_class
        result = await self.db.execute(
            self._held_roles(include_expired).order_by(role_class.name)
        )
        return list(result.scalars().all())

    async def assignments(self, include_expired: bool = False) -> list[Any]:
        """The actor's assignment rows."""
        assignment_class = registry.assignment_class
        query = select(assignment_class).where(assignment_class.actor_id == self.actor.id)
        if not include_expired:
            query = query.where(active_assignment_criteria(assignment_class))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count(self) -> int:
        """Number of roles the actor currently holds."""
        assignment_class = registry.assignment_class
        result = await self.db.execute(
            select(func.count())
            .select_from(assignment_class)
            .where(assignment_class.actor_id == self.actor.id)
            .where(active_assignment_criteria(assignment_class))
        )
        return result.scalar_one()

    async def has_role(self, role_name: Any, resource: Any = None) -> bool:
        """
        Check if the actor holds a role.

        Args:
            role_name: Role name (None is never held)
            resource: None for global, a resource instance, a resource
                class (class-scoped), or ANY for any scope

        With global_roles_override enabled, a global role of the same name
        also satisfies a check against a resource instance.
        """
        if role_name is None:
            return False

        scope = RoleScope.of(resource)
        if await self._holds(role_name, scope):
            return True

        if scope.is_instance and get_settings().global_roles_override:
            return await self._holds(role_name, RoleScope.of(None))
        return False

    async def has_strict_role(self, role_name: Any, resource: Any = None) -> bool:
        """Like has_role, but never applies the global override."""
        if role_name is None:
            return False
        return await self._holds(role_name, RoleScope.of(resource))

    async def only_has_role(self, role_name: Any, resource: Any = None) -> bool:
        """True if the actor holds this role and no other (expired roles don't count)."""
        return await self.has_role(role_name, resource) and await self.count() == 1

    async def roles_name(self, resource: Any = None) -> list[str]:
        """Names of held roles, optionally only those in resource's scope."""
        role_class = registry.role_class
        query = self._held_roles().with_only_columns(role_class.name).order_by(role_class.name)
        if resource is not None:
            query = query.where(*RoleScope.of(resource).criteria(role_class))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def has_only_global_roles(self) -> bool:
        role_class = registry.role_class
        return not await self._exists(
            self._held_roles().where(role_class.resource_type.is_not(None))
        )

    async def has_any_role(self, resource: Any = None) -> bool:
        """True if the actor holds any role at all, or any role in resource's scope."""
        query = self._held_roles()
        if resource is not None:
            query = query.where(*RoleScope.of(resource).criteria(registry.role_class))
        return await self._exists(query)

    async def has_all_roles(self, *role_names: Any, resource: Any = None) -> bool:
        for name in flatten_names(role_names):
            if not await self.has_role(name, resource):
                return False
        return True

    async def has_any_role_of(self, *role_names: Any, resource: Any = None) -> bool:
        for name in flatten_names(role_names):
            if await self.has_role(name, resource):
                return True
        return False

    async def resources(self, resource_class: type) -> list[Any]:
        """Distinct instances of resource_class on which the actor holds a role."""
        role_class = registry.role_class
        query = (
            self._held_roles()
            .with_only_columns(role_class.resource_id)
            .where(role_class.resource_type == registry.type_name(resource_class))
            .where(role_class.resource_id.is_not(None))
            .distinct()
        )
        result = await self.db.execute(query)
        keys = [coerce_resource_id(resource_class, key) for key in result.scalars().all()]
        if not keys:
            return []

        result = await self.db.execute(
            select(resource_class).where(resource_class.id.in_(keys))
        )
        return list(result.scalars().all())

    # ============================================================
    # CACHED QUERIES
    # ============================================================

    async def load_roles(self) -> list[tuple[Any, Any]]:
        """
        Load the actor's (assignment, role) pairs into memory.

        Expired assignments are kept; cached checks filter them by
        expires_at. Loads once; call invalidate() to reload.
        """
        if self._cached is None:
            role_class = registry.role_class
            assignment_class = registry.assignment_class
            result = await self.db.execute(
                select(assignment_class, role_class)
                .join(role_class, role_class.id == assignment_class.role_id)
                .where(assignment_class.actor_id == self.actor.id)
            )
            self._cached = [(assignment, role) for assignment, role in result.all()]
        return self._cached

    @classmethod
    async def preload(cls, db: AsyncSession, actors: Sequence[Any]) -> list["Roleable"]:
        """
        Build Roleables for many actors with their roles loaded in one query.

        Usage:
            for roles in await Roleable.preload(db, users):
                if await roles.has_cached_role("admin"):
                    ...
        """
        role_class = registry.role_class
        assignment_class = registry.assignment_class

        grouped: dict[Any, list[tuple[Any, Any]]] = defaultdict(list)
        actor_ids = [actor.id for actor in actors]
        if actor_ids:
            result = await db.execute(
                select(assignment_class, role_class)
                .join(role_class, role_class.id == assignment_class.role_id)
                .where(assignment_class.actor_id.in_(actor_ids))
            )
            for assignment, role in result.all():
                grouped[assignment.actor_id].append((assignment, role))

        roleables = []
        for actor in actors:
            roleable = cls(db, actor)
            roleable._cached = list(grouped.get(actor.id, []))
            roleables.append(roleable)
        return roleables

    @staticmethod
    def _match_cached(
        entries: list[tuple[Any, Any]],
        role_name: str,
        scope: RoleScope,
        now: datetime,
    ) -> bool:
        for assignment, role in entries:
            if role.name != role_name or assignment.is_expired(now):
                continue
            if scope.matches(role):
                return True
        return False

    async def has_cached_role(self, role_name: Any, resource: Any = None) -> bool:
        """
        has_role() evaluated against the loaded roles, without querying.

        Same scope, expiry and override rules as has_role(). The first call
        on a Roleable that was not preloaded loads the roles once.
        """
        if role_name is None:
            return False

        entries = await self.load_roles()
        scope = RoleScope.of(resource)
        now = utc_now()

        if self._match_cached(entries, str(role_name), scope, now):
            return True
        if scope.is_instance and get_settings().global_roles_override:
            return self._match_cached(entries, str(role_name), RoleScope.of(None), now)
        return False

    def invalidate(self) -> None:
        """Drop cached roles and the memoized permission set."""
        self._cached = None
        if self._ability is not None:
            self._ability.invalidate()

    # ============================================================
    # MUTATIONS
    # ============================================================

    async def _find_assignment(self, role: Any) -> Optional[Any]:
        assignment_class = registry.assignment_class
        result = await self.db.execute(
            select(assignment_class)
            .where(assignment_class.actor_id == self.actor.id)
            .where(assignment_class.role_id == role.id)
        )
        return result.scalar_one_or_none()

    async def add_role(
        self,
        role_name: Any,
        resource: Any = None,
        *,
        expires_at: Optional[datetime] = _UNSET,
        meta: Optional[dict] = _UNSET,
    ) -> Any:
        """
        Grant a role, creating the role on first use.

        If the actor already has an assignment for the role, only the
        fields passed here (expires_at, meta) are updated and the add hooks
        don't run. Re-granting a role whose assignment has expired, without
        a new expires_at, makes it permanent again.

        Returns:
            The role, whichever branch was taken
        """
        role = await RoleRepository(self.db).find_or_create(role_name, resource)
        lifecycle = AssignmentLifecycle(self.db)

        assignment = await self._find_assignment(role)
        if assignment is not None:
            changes: dict[str, Any] = {}
            if expires_at is not _UNSET:
                changes["expires_at"] = expires_at
            elif assignment.is_expired():
                changes["expires_at"] = None
            if meta is not _UNSET:
                changes["meta"] = meta

            if changes and await lifecycle.update(assignment, **changes):
                logger.info(
                    "Role renewed",
                    actor_id=str(self.actor.id),
                    role=role.name,
                    fields=sorted(changes),
                )
            return role

        await self._run_hook("before_add", role)
        await lifecycle.create(
            self.actor,
            role,
            expires_at=None if expires_at is _UNSET else expires_at,
            meta=None if meta is _UNSET else meta,
        )
        logger.info(
            "Role granted",
            actor_id=str(self.actor.id),
            role=role.name,
            resource_type=role.resource_type,
            resource_id=role.resource_id,
        )
        await self._run_hook("after_add", role)
        return role

    grant = add_role

    async def remove_role(self, role_name: Any, resource: Any = None) -> list[Any]:
        """
        Revoke a role, expired or not.

        Returns the removed roles. They are loaded before anything is
        deleted because the last revoke of a role deletes the role itself.
        """
        if role_name is None:
            return []

        role_class = registry.role_class
        assignment_class = registry.assignment_class

        scope = RoleScope.of(resource)
        result = await self.db.execute(
            self._held_roles(include_expired=True)
            .where(role_class.name == str(role_name))
            .where(*scope.criteria(role_class))
        )
        removed = list(result.scalars().all())
        if not removed:
            return []

        lifecycle = AssignmentLifecycle(self.db)
        for role in removed:
            await self._run_hook("before_remove", role)

            assignments = await self.db.execute(
                select(assignment_class)
                .where(assignment_class.actor_id == self.actor.id)
                .where(assignment_class.role_id == role.id)
            )
            await lifecycle.destroy_all(list(assignments.scalars().all()))

            logger.info(
                "Role revoked",
                actor_id=str(self.actor.id),
                role=role.name,
                resource_type=role.resource_type,
                resource_id=role.resource_id,
            )
            await self._run_hook("after_remove", role)

        return removed

    revoke = remove_role

    async def destroy_assignments(self) -> int:
        """
        Remove every assignment of the actor, expired ones included.

        Call before deleting the actor so each removal is audited and
        orphaned roles are cleaned up.
        """
        assignments = await self.assignments(include_expired=True)
        return await AssignmentLifecycle(self.db).destroy_all(assignments)

    async def _run_hook(self, hook: str, role: Any) -> None:
        """
        Run a lifecycle hook declared for the actor's model.

        A string names a method on the actor (called with the role); a
        callable is called with (actor, role). Errors propagate.
        """
        target = registry.hooks_for(type(self.actor)).get(hook)
        if target is None:
            return

        if isinstance(target, str):
            handler = getattr(self.actor, target, None)
            if handler is None:
                return
            result = handler(role)
        else:
            result = target(self.actor, role)

        if inspect.isawaitable(result):
            await result

    # ============================================================
    # PERMISSIONS
    # ============================================================

    @property
    def ability(self) -> Ability:
        if self._ability is None:
            self._ability = Ability(self.db, self.actor)
        return self._ability

    async def permissions(self) -> frozenset[str]:
        return await self.ability.permissions()

    async def can(self, action: str, resource: Any = None) -> bool:
        return await self.ability.can(action, resource)

    # ============================================================
    # DYNAMIC DISPATCH
    # ============================================================

    def resolve(self, name: str) -> Optional[tuple[str, tuple]]:
        """
        Resolve a dynamic operation name.

        Returns (primitive, leading args) or None. Aliases win over the
        shortcut pattern.
        """
        primitive = self.alias_table.get(name)
        if primitive is not None:
            return primitive, ()

        role = match_shortcut(name)
        if role is not None:
            return "has_role", (role,)
        return None

    def responds_to(self, name: str) -> bool:
        if not name.startswith("_") and callable(getattr(type(self), name, None)):
            return True
        return self.resolve(name) is not None

    async def dispatch(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Call an operation by name.

        Usage:
            await roles.dispatch("is_admin")                 # has_role("admin")
            await roles.dispatch("is_manager", organization) # has_role("manager", organization)

        Raises:
            UnknownOperationError: no method, alias or shortcut matches
        """
        resolved = self.resolve(name)
        if resolved is not None:
            primitive, leading = resolved
            return await getattr(self, primitive)(*leading, *args, **kwargs)

        if not name.startswith("_"):
            method = getattr(self, name, None)
            if callable(method):
                result = method(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result

        raise UnknownOperationError(type(self).__name__, name)


class ActorRepository(AliasMixin):
    """
    Actor queries by role.

    Role arguments of with_any_role / with_all_roles may be a name, a
    {"name": ..., "resource": ...} mapping or a (name, resource) tuple.
    """

    alias_templates = REPOSITORY_ALIASES

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def model(self) -> type:
        return registry.actor_class

    def _actor_ids_with_role(self, role_name: Any, resource: Any = None):
        role_class = registry.role_class
        assignment_class = registry.assignment_class
        scope = RoleScope.of(resource)

        return (
            select(assignment_class.actor_id)
            .join(role_class, role_class.id == assignment_class.role_id)
            .where(role_class.name == str(role_name))
            .where(*scope.criteria(role_class))
            .where(active_assignment_criteria(assignment_class))
            .distinct()
        )

    async def ids_with_role(self, role_name: Any, resource: Any = None) -> set[Any]:
        if role_name is None:
            return set()
        result = await self.db.execute(self._actor_ids_with_role(role_name, resource))
        return set(result.scalars().all())

    async def _load(self, ids: Iterable[Any]) -> list[Any]:
        ids = list(ids)
        if not ids:
            return []
        result = await self.db.execute(select(self.model).where(self.model.id.in_(ids)))
        return list(result.scalars().all())

    async def with_role(self, role_name: Any, resource: Any = None) -> list[Any]:
        """Actors holding the role in the given scope."""
        if role_name is None:
            return []
        result = await self.db.execute(
            select(self.model).where(
                self.model.id.in_(self._actor_ids_with_role(role_name, resource))
            )
        )
        return list(result.scalars().all())

    async def without_role(self, role_name: Any, resource: Any = None) -> list[Any]:
        """Actors not holding the role in the given scope."""
        query = select(self.model)
        if role_name is not None:
            query = query.where(
                self.model.id.not_in(self._actor_ids_with_role(role_name, resource))
            )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def with_any_role(self, *args: Any) -> list[Any]:
        """Actors holding at least one of the roles (union)."""
        ids: set[Any] = set()
        for arg in args:
            name, resource = parse_role_arg(arg)
            ids |= await self.ids_with_role(name, resource)
        return await self._load(ids)

    async def with_all_roles(self, *args: Any) -> list[Any]:
        """Actors holding every one of the roles (intersection)."""
        ids: Optional[set[Any]] = None
        for arg in args:
            name, resource = parse_role_arg(arg)
            current = await self.ids_with_role(name, resource)
            ids = current if ids is None else ids & current
            if not ids:
                return []
        return await self._load(ids or ())

