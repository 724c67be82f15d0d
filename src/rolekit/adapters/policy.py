"""
Policy adapter.

A policy class named after a resource answers can_<verb>() from the
actor's permission strings:

    class PostPolicy(PermissionPolicyMixin):
        def __init__(self, ability, post=None):
            self.ability = ability
            self.post = post

    policy = PostPolicy(Roleable(db, user).ability)
    await policy.can_update()       # checks "posts.update"
    await policy.query("publish")   # checks "posts.publish"

Methods the policy defines itself always win over the generated ones.
"""

import re
from typing import Any, Awaitable, Callable

from rolekit.registry import registry

PREFIX = "can_"


def pluralize(word: str) -> str:
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


def underscore(name: str) -> str:
    """CamelCase -> snake_case."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.lower()


class PermissionPolicyMixin:
    """Answers can_<verb>() by checking "<resource-plural>.<verb>"."""

    policy_suffix = "Policy"

    @classmethod
    def resource_name(cls) -> str:
        """
        PostPolicy -> "posts".

        The table name of a registered resource model of that name wins;
        otherwise the class name is snake_cased and pluralized.
        """
        name = cls.__name__
        if name.endswith(cls.policy_suffix):
            name = name[: -len(cls.policy_suffix)]
        model = registry.resolve_resource(name)
        table = getattr(model, "__tablename__", None)
        if table:
            return table
        return pluralize(underscore(name))

    def permission_for(self, verb: str) -> str:
        return f"{self.resource_name()}.{verb}"

    async def query(self, verb: str) -> bool:
        """True if the policy's ability grants the permission for verb."""
        ability = getattr(self, "ability", None)
        if ability is None:
            return False
        return await ability.can(self.permission_for(verb))

    def __getattr__(self, name: str) -> Callable[[], Awaitable[bool]]:
        if name.startswith(PREFIX) and len(name) > len(PREFIX):
            verb = name[len(PREFIX):]

            async def check(*args: Any, **kwargs: Any) -> bool:
                return await self.query(verb)

            check.__name__ = name
            return check
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
