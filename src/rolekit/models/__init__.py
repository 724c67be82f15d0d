"""
rolekit models.

Mixins for the host's concrete Role, RoleAssignment, Permission and
RoleAssignmentAudit models.
"""

from .base import JSONType, StandardMixin, TimestampMixin, UUIDMixin
from .mixins import (
    AssignmentMixin,
    AuditOperation,
    AuditRecordMixin,
    PermissionMixin,
    RoleMixin,
)

__all__ = [
    # Base
    "JSONType",
    "UUIDMixin",
    "TimestampMixin",
    "StandardMixin",
    # rolekit models
    "RoleMixin",
    "AssignmentMixin",
    "PermissionMixin",
    "AuditRecordMixin",
    "AuditOperation",
]
