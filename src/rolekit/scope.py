"""
Role scopes.

Every role query takes a `resource` argument that can be:

    None            -> global roles only
    ANY             -> the role name in any scope
    a model class   -> class-scoped roles (resource_type set, resource_id NULL)
    a model object  -> roles on that one resource instance

RoleScope turns that argument into a tagged value once, so the SQL path
(criteria) and the in-memory path (matches) apply the same rule.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from rolekit.registry import registry


class ScopeKind(str, Enum):
    GLOBAL = "global"
    ANY = "any"
    TYPE = "type"
    INSTANCE = "instance"


class _AnyResource:
    """Sentinel: match a role name regardless of its scope."""

    _instance: Optional["_AnyResource"] = None

    def __new__(cls) -> "_AnyResource":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ANY"


ANY = _AnyResource()


def resource_key(resource: Any) -> str:
    """String form of a resource's primary key, as stored in Role.resource_id."""
    resource_id = getattr(resource, "id", None)
    if resource_id is None:
        raise ValueError(f"{resource!r} has no id; flush it before scoping roles to it")
    return str(resource_id)


@dataclass(frozen=True)
class RoleScope:
    kind: ScopeKind
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None

    @classmethod
    def of(cls, resource: Any = None) -> "RoleScope":
        if isinstance(resource, RoleScope):
            return resource
        if resource is None:
            return cls(ScopeKind.GLOBAL)
        if resource is ANY:
            return cls(ScopeKind.ANY)
        if isinstance(resource, type):
            return cls(ScopeKind.TYPE, registry.type_name(resource))
        return cls(
            ScopeKind.INSTANCE,
            registry.type_name(type(resource)),
            resource_key(resource),
        )

    @property
    def is_instance(self) -> bool:
        return self.kind is ScopeKind.INSTANCE

    def criteria(self, role_cls: type) -> list:
        """SQL filters selecting roles in this scope."""
        if self.kind is ScopeKind.ANY:
            return []
        if self.kind is ScopeKind.GLOBAL:
            return [role_cls.resource_type.is_(None), role_cls.resource_id.is_(None)]
        if self.kind is ScopeKind.TYPE:
            return [role_cls.resource_type == self.resource_type, role_cls.resource_id.is_(None)]
        return [role_cls.resource_type == self.resource_type, role_cls.resource_id == self.resource_id]

    def matches(self, role: Any) -> bool:
        """In-memory equivalent of criteria()."""
        if self.kind is ScopeKind.ANY:
            return True
        return role.resource_type == self.resource_type and role.resource_id == self.resource_id

    def values(self) -> dict[str, Optional[str]]:
        """Column values for a new role in this scope."""
        if self.kind is ScopeKind.ANY:
            raise ValueError("ANY is a query scope; a role can't be created in it")
        return {"resource_type": self.resource_type, "resource_id": self.resource_id}
