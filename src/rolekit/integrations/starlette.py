"""
Starlette / FastAPI middleware binding the current actor.

    app.add_middleware(CurrentActorMiddleware)                  # request.state.user
    app.add_middleware(CurrentActorMiddleware, state_attr="member")
    app.add_middleware(CurrentActorMiddleware, resolve_actor=load_user)

resolve_actor receives the request and may be async. Whatever it returns
is bound with rolekit.context.with_actor() for the rest of the request,
so audit rows written by the handler name that actor.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from rolekit.context import with_actor

ActorResolver = Callable[[Request], Union[Any, Awaitable[Any]]]


class CurrentActorMiddleware(BaseHTTPMiddleware):
    """Bind the request's actor as the rolekit current actor."""

    def __init__(
        self,
        app: ASGIApp,
        state_attr: str = "user",
        resolve_actor: Optional[ActorResolver] = None,
    ):
        super().__init__(app)
        self.state_attr = state_attr
        self.resolve_actor = resolve_actor

    async def _actor(self, request: Request) -> Any:
        if self.resolve_actor is None:
            return getattr(request.state, self.state_attr, None)
        actor = self.resolve_actor(request)
        if inspect.isawaitable(actor):
            actor = await actor
        return actor

    async def dispatch(self, request: Request, call_next) -> Response:
        actor = await self._actor(request)
        if actor is None:
            return await call_next(request)

        with with_actor(actor):
            return await call_next(request)
