"""
Rule loader adapter.

Turns permission strings into rules on a rule-based ability object. The
host class supplies can(action, subject):

    class AppAbility(RuleLoaderMixin):
        def __init__(self):
            self.rules = []

        def can(self, action, subject):
            self.rules.append((action, subject))

    app_ability = AppAbility()
    await app_ability.load_rolekit_permissions(Roleable(db, user).ability)

    "posts.update"  -> can("update", Post)      # posts resolves to a resource model
    "reports.view"  -> can("view", "reports")   # no model: plain subject name
    "manage_all"    -> can("manage_all", ALL)
"""

from typing import Any, Iterable

from rolekit.registry import registry

# Subject for permissions that carry no resource part
ALL = "all"

SEPARATOR = "."


def parse_permission(action: str) -> tuple[str, Any]:
    """Split a permission string into (verb, subject)."""
    if SEPARATOR not in action:
        return action, ALL

    subject_name, verb = action.split(SEPARATOR, 1)
    subject = registry.resolve_resource(subject_name)
    return verb, subject if subject is not None else subject_name


class RuleLoaderMixin:
    """Mixin for ability classes that expose can(action, subject)."""

    def load_permission_strings(self, permissions: Iterable[str]) -> None:
        for permission in sorted(permissions):
            verb, subject = parse_permission(permission)
            self.can(verb, subject)

    async def load_rolekit_permissions(self, ability: Any) -> None:
        """Register a rule for every permission the rolekit Ability grants."""
        if ability is None:
            return
        self.load_permission_strings(await ability.permissions())
