"""
Role vocabulary aliases.

Lets an application speak of "groups" (or "teams", ...) instead of
roles. Declaring an alias on a subclass generates real methods that
forward to the role primitives:

    class Membership(Roleable):
        role_aliases = ("group",)

    await Membership(db, user).add_group("staff")     # -> add_role
    await Membership(db, user).has_group("staff")     # -> has_role
    await Membership(db, user).groups_name()          # -> roles_name

    class Members(ActorRepository):
        role_aliases = (("crew", "crew"),)            # (singular, plural)

    await Members(db).with_crew("deckhands")          # -> with_role

The alias -> primitive table is built once, when the class is created,
and dispatch() consults it by name.
"""

from typing import Any, Callable, ClassVar, Union

AliasDecl = Union[str, tuple[str, str]]

# Templates use {alias} (singular) and {plural}
ROLEABLE_ALIASES: dict[str, str] = {
    "add_{alias}": "add_role",
    "grant_{alias}": "grant",
    "remove_{alias}": "remove_role",
    "revoke_{alias}": "revoke",
    "has_{alias}": "has_role",
    "has_strict_{alias}": "has_strict_role",
    "only_has_{alias}": "only_has_role",
    "has_cached_{alias}": "has_cached_role",
    "{plural}": "roles",
    "{alias}_names": "roles_name",
    "{plural}_name": "roles_name",
    "has_only_global_{plural}": "has_only_global_roles",
    "has_any_{alias}": "has_any_role",
    "has_all_{plural}": "has_all_roles",
    "has_any_{alias}_of": "has_any_role_of",
}

REPOSITORY_ALIASES: dict[str, str] = {
    "with_{alias}": "with_role",
    "without_{alias}": "without_role",
    "with_any_{alias}": "with_any_role",
    "with_all_{plural}": "with_all_roles",
}


def parse_alias(alias: AliasDecl) -> tuple[str, str]:
    """Return (singular, plural) for an alias declaration."""
    if isinstance(alias, str):
        return alias, f"{alias}s"
    singular, plural = alias
    return singular, plural


def build_alias_table(aliases: tuple, templates: dict[str, str]) -> dict[str, str]:
    """Map every generated method name to the primitive it forwards to."""
    table: dict[str, str] = {}
    for alias in aliases:
        singular, plural = parse_alias(alias)
        for template, primitive in templates.items():
            table[template.format(alias=singular, plural=plural)] = primitive
    return table


def _forward(name: str, primitive: str) -> Callable[..., Any]:
    def method(self, *args: Any, **kwargs: Any) -> Any:
        return getattr(self, primitive)(*args, **kwargs)

    method.__name__ = name
    method.__qualname__ = name
    method.__doc__ = f"Alias of {primitive}()."
    return method


class AliasMixin:
    """Generates alias methods from role_aliases on subclass creation."""

    role_aliases: ClassVar[tuple] = ()
    alias_templates: ClassVar[dict[str, str]] = {}
    alias_table: ClassVar[dict[str, str]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        # Inherit the parent's aliases, add this class's own
        table = dict(cls.alias_table)
        own = build_alias_table(cls.__dict__.get("role_aliases", ()), cls.alias_templates)

        for name, primitive in own.items():
            if name in cls.__dict__:
                raise TypeError(f"{cls.__name__}.{name} already defined; alias would shadow it")
            setattr(cls, name, _forward(name, primitive))

        table.update(own)
        cls.alias_table = table
