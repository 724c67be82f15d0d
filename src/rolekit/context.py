"""
Current actor context.

The actor responsible for a role change is recorded on every audit row.
It is carried in a ContextVar, so each request / task sees its own value:

    from rolekit.context import with_actor

    with with_actor(current_user):
        await Roleable(db, member).add_role("editor")

The binding is restored on every exit path, including exceptions. Works
the same inside sync and async code.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

_current_actor: ContextVar[Optional[Any]] = ContextVar("rolekit_current_actor", default=None)


def get_current_actor() -> Optional[Any]:
    """Get the actor bound for the current unit of work, if any."""
    return _current_actor.get()


@contextmanager
def with_actor(actor: Any) -> Iterator[Any]:
    """
    Bind actor as the current actor for the duration of the block.

    Nested blocks shadow the outer binding and restore it on exit.
    """
    token = _current_actor.set(actor)
    try:
        yield actor
    finally:
        _current_actor.reset(token)


def actor_reference(actor: Any = None) -> Optional[str]:
    """
    String reference for an actor, as stored in audit rows.

    Uses the actor's id when it has one, otherwise str(actor).
    Defaults to the current actor.
    """
    if actor is None:
        actor = get_current_actor()
    if actor is None:
        return None
    actor_id = getattr(actor, "id", None)
    if actor_id is not None:
        return str(actor_id)
    return str(actor)


# ============================================================
# STRUCTLOG PROCESSOR
# ============================================================

def add_actor_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    Structlog processor that adds the current actor to all logs.

    Usage:
        structlog.configure(
            processors=[
                add_actor_context,
                structlog.processors.JSONRenderer(),
            ]
        )
    """
    reference = actor_reference()
    if reference is not None:
        event_dict.setdefault("current_actor", reference)
    return event_dict
