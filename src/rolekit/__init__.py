"""
rolekit - role and permission resolution for SQLAlchemy async applications.

Quick start:
    from rolekit import Roleable, registry, RoleMixin, AssignmentMixin

    @registry.model()
    class Role(Base, RoleMixin):
        __tablename__ = "roles"

    @registry.model()
    class RoleAssignment(Base, AssignmentMixin):
        __tablename__ = "role_assignments"

    roles = Roleable(db, user)
    await roles.add_role("admin")
    await roles.has_role("admin")
"""

from rolekit.ability import Ability
from rolekit.audit import AuditRecorder
from rolekit.cleanup import Cleanup
from rolekit.config import RoleKitSettings, configure, get_settings, reset_settings
from rolekit.context import add_actor_context, get_current_actor, with_actor
from rolekit.exceptions import NotConfiguredError, RoleKitError, UnknownOperationError
from rolekit.lifecycle import AssignmentLifecycle
from rolekit.models import (
    AssignmentMixin,
    AuditOperation,
    AuditRecordMixin,
    PermissionMixin,
    RoleMixin,
)
from rolekit.registry import ModelRegistry, registry
from rolekit.resourceable import Resourceable, ResourceRepository
from rolekit.roleable import ActorRepository, Roleable
from rolekit.roles import RoleRepository
from rolekit.scope import ANY, RoleScope, ScopeKind

__version__ = "0.1.0"

__all__ = [
    "ANY",
    "Ability",
    "ActorRepository",
    "AssignmentLifecycle",
    "AssignmentMixin",
    "AuditOperation",
    "AuditRecordMixin",
    "AuditRecorder",
    "Cleanup",
    "ModelRegistry",
    "NotConfiguredError",
    "PermissionMixin",
    "ResourceRepository",
    "Resourceable",
    "RoleKitError",
    "RoleKitSettings",
    "RoleMixin",
    "RoleRepository",
    "RoleScope",
    "Roleable",
    "ScopeKind",
    "UnknownOperationError",
    "add_actor_context",
    "configure",
    "get_settings",
    "get_current_actor",
    "registry",
    "reset_settings",
    "with_actor",
]
