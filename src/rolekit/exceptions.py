"""rolekit exceptions."""


class RoleKitError(Exception):
    """Base class for rolekit errors."""


class NotConfiguredError(RoleKitError):
    """A model type required by an operation is not registered."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(
            f"No model registered for type '{type_name}'. "
            f"Register it with @registry.model() or registry.register()."
        )


class UnknownOperationError(RoleKitError, AttributeError):
    """
    Raised when dynamic dispatch finds no alias or shortcut for a name.

    Subclasses AttributeError so callers can treat it like any other
    missing attribute.
    """

    def __init__(self, owner: str, name: str):
        super().__init__(f"'{owner}' has no operation '{name}'")
        # AttributeError.__init__ resets name, so set it afterwards
        self.owner = owner
        self.name = name
