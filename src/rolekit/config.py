"""
rolekit configuration using Pydantic Settings.

Settings are created lazily on first use and can be changed at runtime:

    from rolekit.config import configure

    configure(global_roles_override=True)
    configure(dynamic_shortcuts_pattern="in_{role}_group")

Every value can also come from the environment with the ROLEKIT_ prefix,
e.g. ROLEKIT_GLOBAL_ROLES_OVERRIDE=true.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROLE_PLACEHOLDER = "{role}"


class RoleKitSettings(BaseSettings):
    """Process-wide rolekit settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROLEKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    # Logical model type names, resolved through rolekit.registry
    actor_type: str = Field(default="User")
    role_type: str = Field(default="Role")
    assignment_type: str = Field(default="RoleAssignment")
    permission_type: str = Field(default="Permission")
    audit_type: str = Field(default="RoleAssignmentAudit")

    # A global role satisfies resource-scoped checks when enabled
    global_roles_override: bool = Field(default=False)

    # Method-name template for role shortcuts, e.g. is_admin -> has_role("admin")
    dynamic_shortcuts_pattern: Optional[str] = Field(
        default="is_{role}",
        description="Template with one {role} placeholder; empty disables shortcuts",
    )

    # Only used by the celery cleanup task
    database_url: Optional[str] = Field(default=None)
    cleanup_remove_orphaned_roles: bool = Field(
        default=False,
        description="Also delete roles left without assignments after the expiry sweep",
    )

    @field_validator("dynamic_shortcuts_pattern")
    @classmethod
    def validate_shortcuts_pattern(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        if v.count(ROLE_PLACEHOLDER) != 1:
            raise ValueError(
                f"dynamic_shortcuts_pattern must contain exactly one {ROLE_PLACEHOLDER} placeholder"
            )
        if v == ROLE_PLACEHOLDER:
            # Would match every method name
            raise ValueError("dynamic_shortcuts_pattern needs text around the {role} placeholder")
        return v


_settings: Optional[RoleKitSettings] = None


def get_settings() -> RoleKitSettings:
    """Get the process-wide settings, creating them on first use."""
    global _settings
    if _settings is None:
        _settings = RoleKitSettings()
    return _settings


def configure(**changes: Any) -> RoleKitSettings:
    """
    Change settings at runtime.

    Usage:
        configure(actor_type="Member", global_roles_override=True)
    """
    settings = get_settings()
    for key, value in changes.items():
        if key not in RoleKitSettings.model_fields:
            raise ValueError(f"Unknown rolekit setting: '{key}'")
        setattr(settings, key, value)
    return settings


def reset_settings() -> None:
    """Drop the cached settings so the next access reloads them."""
    global _settings
    _settings = None


# ============================================================
# DYNAMIC SHORTCUTS
# ============================================================

@dataclass(frozen=True)
class ShortcutMatcher:
    """Extracts the role name from a method name built from a pattern."""

    pattern: str
    regex: re.Pattern

    def match(self, name: str) -> Optional[str]:
        found = self.regex.fullmatch(name)
        if not found:
            return None
        return found.group("role")

    def build(self, role: str) -> str:
        return self.pattern.replace(ROLE_PLACEHOLDER, role)


@lru_cache(maxsize=32)
def shortcut_matcher(pattern: str) -> ShortcutMatcher:
    """
    Compile a shortcut pattern.

    Cached per pattern string, so changing the configured pattern always
    yields a fresh matcher.
    """
    prefix, suffix = pattern.split(ROLE_PLACEHOLDER)
    regex = re.compile(f"{re.escape(prefix)}(?P<role>\\w+?){re.escape(suffix)}")
    return ShortcutMatcher(pattern=pattern, regex=regex)


def match_shortcut(name: str) -> Optional[str]:
    """Return the role captured from name, or None when shortcuts are off or name doesn't match."""
    pattern = get_settings().dynamic_shortcuts_pattern
    if not pattern:
        return None
    return shortcut_matcher(pattern).match(name)
