"""Middleware pipeline wrapping the bot's turn logic."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from botframe.schema import Channels
from botframe.turn_context import TurnContext

type NextDelegate = Callable[[], Awaitable[None]]
type BotCallbackHandler = Callable[[TurnContext], Awaitable[None]]
type MiddlewareHandler = Callable[[TurnContext, NextDelegate], Awaitable[None]]


@runtime_checkable
class Middleware(Protocol):
    """One pipeline stage.

    Work done before `await next_()` runs on the way in, work after it on the
    way out. Not calling `next_` ends the turn early.
    """

    async def on_turn(self, context: TurnContext, next_: NextDelegate) -> None: ...


class FunctionMiddleware:
    """Adapt a plain `async def handler(context, next_)` to `Middleware`."""

    def __init__(self, handler: MiddlewareHandler) -> None:
        if not callable(handler):
            raise TypeError("middleware handler must be callable")
        self.handler = handler

    async def on_turn(self, context: TurnContext, next_: NextDelegate) -> None:
        await self.handler(context, next_)

    def __repr__(self) -> str:
        return f"FunctionMiddleware({getattr(self.handler, '__qualname__', self.handler)!r})"


class MiddlewareSet:
    """Ordered middleware stages ending in the bot callback."""

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []

    def use(self, middleware: Middleware | MiddlewareHandler) -> MiddlewareSet:
        self._middleware.append(_as_middleware(middleware))
        return self

    @property
    def middleware(self) -> list[Middleware]:
        return list(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    async def receive_activity(self, context: TurnContext, callback: BotCallbackHandler | None = None) -> None:
        await self.receive_activity_with_status(context, callback)

    async def receive_activity_with_status(self, context: TurnContext, callback: BotCallbackHandler | None) -> bool:
        """Run the stages, then the callback. Returns False when a stage short-circuited."""

        completed = False

        async def run_callback() -> None:
            nonlocal completed
            completed = True
            if callback is not None:
                await callback(context)

        await self._run_stage(context, 0, run_callback)
        return completed

    async def _run_stage(self, context: TurnContext, index: int, terminal: NextDelegate) -> None:
        if index == len(self._middleware):
            await terminal()
            return

        stage = self._middleware[index]
        called = False

        async def next_() -> None:
            nonlocal called
            if called:
                logger.warning("middleware.next_called_twice stage={}", stage)
                return
            called = True
            await self._run_stage(context, index + 1, terminal)

        await stage.on_turn(context, next_)


class RegisterClassMiddleware:
    """Expose a shared service (e.g. `UserState`) in every turn's state under its class name."""

    def __init__(self, service: Any, key: str | None = None) -> None:
        if service is None:
            raise TypeError("service must not be None")
        self.service = service
        self.key = key or type(service).__name__

    async def on_turn(self, context: TurnContext, next_: NextDelegate) -> None:
        if self.key not in context.turn_state:
            context.turn_state.add(self.key, self.service)
        await next_()


class TenantIdWorkaroundForTeamsMiddleware:
    """Copy the Teams tenant id from `channel_data.tenant.id` into `conversation.tenant_id`.

    Only applies to msteams activities whose conversation has no tenant id yet.
    """

    async def on_turn(self, context: TurnContext, next_: NextDelegate) -> None:
        activity = context.activity
        if (
            (activity.channel_id or "").casefold() == Channels.MSTEAMS
            and activity.conversation is not None
            and not activity.conversation.tenant_id
        ):
            tenant_id = _teams_tenant_id(activity.channel_data)
            if tenant_id:
                activity.conversation.tenant_id = tenant_id
        await next_()


def _teams_tenant_id(channel_data: Any) -> str | None:
    if channel_data is None:
        return None
    if not isinstance(channel_data, Mapping):
        channel_data = getattr(channel_data, "__dict__", None)
        if channel_data is None:
            return None
    tenant = channel_data.get("tenant")
    if isinstance(tenant, Mapping):
        tenant_id = tenant.get("id")
    else:
        tenant_id = getattr(tenant, "id", None)
    return str(tenant_id) if tenant_id else None


def _as_middleware(candidate: Middleware | MiddlewareHandler) -> Middleware:
    if isinstance(candidate, Middleware):
        return candidate
    if callable(candidate):
        return FunctionMiddleware(candidate)
    raise TypeError(f"not a middleware: {candidate!r}")
