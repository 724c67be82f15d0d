"""
Model registry.

rolekit never resolves classes from strings by reflection. The host
registers its concrete models here, and the configured type names
(see rolekit.config) select among them.

Usage:
    from rolekit import registry

    @registry.actor(before_add="log_before_add", after_add=notify_admins)
    class User(Base):
        ...

    @registry.model()
    class Role(Base, RoleMixin):
        ...

    @registry.resource()
    class Organization(Base):
        ...
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar, Union

from rolekit.config import get_settings
from rolekit.exceptions import NotConfiguredError

ModelT = TypeVar("ModelT", bound=type)

# A hook is a method name on the actor, or a callable taking (actor, role)
HookSpec = Union[str, Callable[..., Any]]

HOOK_NAMES = ("before_add", "after_add", "before_remove", "after_remove")


@dataclass(frozen=True)
class ActorHooks:
    """Lifecycle hooks declared for one actor model."""

    before_add: Optional[HookSpec] = None
    after_add: Optional[HookSpec] = None
    before_remove: Optional[HookSpec] = None
    after_remove: Optional[HookSpec] = None

    def get(self, name: str) -> Optional[HookSpec]:
        return getattr(self, name)


class ModelRegistry:
    """
    Registry of the models rolekit works with.

    Models are keyed by type name (class name unless given). Resource
    models are kept separately because their type name is what gets
    written to Role.resource_type.
    """

    def __init__(self) -> None:
        self._models: dict[str, type] = {}
        self._resources: dict[str, type] = {}
        self._hooks: dict[type, ActorHooks] = {}

    # ============================================================
    # REGISTRATION
    # ============================================================

    def register(self, model: ModelT, name: Optional[str] = None) -> ModelT:
        """Register a model under name (default: class name)."""
        self._models[name or model.__name__] = model
        return model

    def model(self, name: Optional[str] = None) -> Callable[[ModelT], ModelT]:
        """
        Decorator to register a model.

        Usage:
            @registry.model()
            class RoleAssignment(Base, AssignmentMixin):
                ...
        """
        def decorator(model: ModelT) -> ModelT:
            return self.register(model, name)
        return decorator

    def actor(
        self,
        name: Optional[str] = None,
        **hooks: HookSpec,
    ) -> Callable[[ModelT], ModelT]:
        """
        Decorator to register an actor model with optional lifecycle hooks.

        Hooks: before_add, after_add, before_remove, after_remove.
        """
        unknown = set(hooks) - set(HOOK_NAMES)
        if unknown:
            raise ValueError(f"Unknown actor hooks: {sorted(unknown)}")

        def decorator(model: ModelT) -> ModelT:
            self.register(model, name)
            self._hooks[model] = ActorHooks(**hooks)
            return model
        return decorator

    def set_hooks(self, actor_cls: type, **hooks: HookSpec) -> None:
        """Replace the lifecycle hooks of an actor model."""
        self._hooks[actor_cls] = ActorHooks(**hooks)

    def register_resource(self, model: ModelT, name: Optional[str] = None) -> ModelT:
        """Register a resource model. Its type name is stored on scoped roles."""
        self._resources[name or model.__name__] = model
        return model

    def resource(self, name: Optional[str] = None) -> Callable[[ModelT], ModelT]:
        """Decorator form of register_resource."""
        def decorator(model: ModelT) -> ModelT:
            return self.register_resource(model, name)
        return decorator

    # ============================================================
    # LOOKUP
    # ============================================================

    def get(self, type_name: str) -> Optional[type]:
        return self._models.get(type_name)

    def require(self, type_name: str) -> type:
        model = self._models.get(type_name)
        if model is None:
            raise NotConfiguredError(type_name)
        return model

    @property
    def actor_class(self) -> type:
        return self.require(get_settings().actor_type)

    @property
    def role_class(self) -> type:
        return self.require(get_settings().role_type)

    @property
    def assignment_class(self) -> type:
        return self.require(get_settings().assignment_type)

    @property
    def permission_class(self) -> Optional[type]:
        """Permission model, or None when the host has none."""
        return self.get(get_settings().permission_type)

    @property
    def audit_class(self) -> Optional[type]:
        """Audit model, or None when the host has none."""
        return self.get(get_settings().audit_type)

    def hooks_for(self, actor_cls: type) -> ActorHooks:
        for klass in actor_cls.__mro__:
            if klass in self._hooks:
                return self._hooks[klass]
        return ActorHooks()

    def type_name(self, resource_cls: type) -> str:
        """Name stored in Role.resource_type for a resource class."""
        for name, model in self._resources.items():
            if model is resource_cls:
                return name
        return resource_cls.__name__

    def resolve_resource(self, name: str) -> Optional[type]:
        """
        Find a resource model by registered name, class name or table name.

        Used by the rule adapter to map "posts" to the Post model.
        """
        if name in self._resources:
            return self._resources[name]
        for model in self._resources.values():
            if model.__name__ == name or getattr(model, "__tablename__", None) == name:
                return model
        return None

    def resources(self) -> dict[str, type]:
        return dict(self._resources)

    def clear(self) -> None:
        """Remove all registrations (tests)."""
        self._models.clear()
        self._resources.clear()
        self._hooks.clear()


# Global registry instance
registry = ModelRegistry()
