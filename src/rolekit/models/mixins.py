"""
rolekit model mixins - Roles, Assignments, Permissions and Audit records.

The host application declares concrete models on its own declarative
base and registers them:

    @registry.model()
    class Role(Base, RoleMixin):
        __tablename__ = "roles"

    @registry.model()
    class RoleAssignment(Base, AssignmentMixin):
        __tablename__ = "role_assignments"

    @registry.model()
    class Permission(Base, PermissionMixin):
        __tablename__ = "permissions"

    @registry.model()
    class RoleAssignmentAudit(Base, AuditRecordMixin):
        __tablename__ = "role_assignment_audits"

Foreign keys point at the tables named by __actor_table__ and
__role_table__. Override them (and __actor_id_type__ for non-UUID actor
keys) on the concrete class.

No ORM relationships are declared: every query joins on the key columns
explicitly, which keeps the models usable from AsyncSession without
lazy loading.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID as PyUUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from rolekit.models.base import JSONType, StandardMixin, UUIDMixin
from rolekit.timezone import is_past


class AuditOperation(str, Enum):
    """Assignment lifecycle transitions recorded in the audit trail."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# ============================================================
# ROLE
# ============================================================

class RoleMixin(StandardMixin):
    """
    Role definition.

    A role is global (no resource), class-scoped (resource_type only) or
    scoped to one resource instance (resource_type and resource_id).
    resource_id holds the string form of the resource's primary key so
    integer and UUID keyed resources can share one table.

    The (name, resource_type, resource_id) triple is unique. Plain unique
    constraints treat NULLs as distinct, so each scope shape gets its own
    partial unique index.
    """

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        table = cls.__tablename__
        global_scope = "resource_type IS NULL AND resource_id IS NULL"
        class_scope = "resource_type IS NOT NULL AND resource_id IS NULL"
        return (
            Index(
                f"uq_{table}_global_name",
                "name",
                unique=True,
                sqlite_where=text(global_scope),
                postgresql_where=text(global_scope),
            ),
            Index(
                f"uq_{table}_class_scope",
                "name",
                "resource_type",
                unique=True,
                sqlite_where=text(class_scope),
                postgresql_where=text(class_scope),
            ),
            UniqueConstraint(
                "name", "resource_type", "resource_id",
                name=f"uq_{table}_instance_scope",
            ),
            Index(f"ix_{table}_resource", "resource_type", "resource_id"),
        )

    @property
    def is_global(self) -> bool:
        return self.resource_type is None and self.resource_id is None

    @property
    def resource_key(self) -> Optional[str]:
        """Scope label: "Organization:42", "Organization" when class-scoped, None when global."""
        if self.resource_type is None:
            return None
        if self.resource_id is None:
            return self.resource_type
        return f"{self.resource_type}:{self.resource_id}"

    def __repr__(self) -> str:
        if self.resource_key is None:
            return f"<Role {self.name}>"
        return f"<Role {self.name} ({self.resource_key})>"


# ============================================================
# ASSIGNMENT
# ============================================================

class AssignmentMixin(StandardMixin):
    """
    Actor role assignment.

    Links one actor to one role, optionally until expires_at, with an
    opaque meta blob. At most one row exists per (actor_id, role_id):
    granting the same role again updates this row.

    Examples:
        # Permanent
        RoleAssignment(actor_id=user.id, role_id=admin.id)

        # Temporary
        RoleAssignment(actor_id=user.id, role_id=approver.id, expires_at=end_of_quarter)
    """

    __actor_table__ = "users"
    __role_table__ = "roles"
    __actor_id_type__ = UUID(as_uuid=True)

    @declared_attr
    def actor_id(cls) -> Mapped[Any]:
        return mapped_column(
            cls.__actor_id_type__,
            ForeignKey(f"{cls.__actor_table__}.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    @declared_attr
    def role_id(cls) -> Mapped[PyUUID]:
        return mapped_column(
            UUID(as_uuid=True),
            ForeignKey(f"{cls.__role_table__}.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    # Validity (None = never expires)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    meta: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        return (
            UniqueConstraint("actor_id", "role_id", name=f"uq_{cls.__tablename__}_actor_role"),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expired means expires_at is set and not in the future."""
        return is_past(self.expires_at, now)

    def __repr__(self) -> str:
        return f"<RoleAssignment actor={self.actor_id} role={self.role_id}>"


# ============================================================
# PERMISSION
# ============================================================

class PermissionMixin(UUIDMixin):
    """
    Permission granted by a role.

    action is free-form, conventionally "<resource-plural>.<verb>"
    ("posts.update") or a bare verb that applies to every resource type
    ("manage_all"). conditions is carried for host-side ABAC checks.
    """

    __role_table__ = "roles"

    @declared_attr
    def role_id(cls) -> Mapped[PyUUID]:
        return mapped_column(
            UUID(as_uuid=True),
            ForeignKey(f"{cls.__role_table__}.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    action: Mapped[str] = mapped_column(String(150), nullable=False)
    conditions: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        return (
            UniqueConstraint("role_id", "action", name=f"uq_{cls.__tablename__}_role_action"),
        )

    def __repr__(self) -> str:
        return f"<Permission {self.action}>"


# ============================================================
# AUDIT
# ============================================================

class AuditRecordMixin(UUIDMixin):
    """
    Immutable audit row for an assignment lifecycle transition.

    Keys are copied rather than linked so the trail survives deletion of
    the assignment, actor or role. actor_reference is whoever was bound
    with rolekit.context.with_actor() when the change happened.
    """

    assignment_id: Mapped[Optional[PyUUID]] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    role_id: Mapped[Optional[PyUUID]] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    operation: Mapped[str] = mapped_column(String(10), nullable=False)
    actor_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    meta_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    expires_at_snapshot: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<RoleAssignmentAudit {self.operation} assignment={self.assignment_id}>"
