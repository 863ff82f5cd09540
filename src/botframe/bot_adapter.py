"""Adapter base class: middleware registration and the turn pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Self

import pluggy
from loguru import logger

from botframe.errors import BotArgumentError, TurnStateReleaseError
from botframe.hook_runtime import HookRuntime, create_plugin_manager
from botframe.middleware import BotCallbackHandler, Middleware, MiddlewareHandler, MiddlewareSet
from botframe.schema import Activity, ConversationReference, ResourceResponse
from botframe.turn_context import TurnContext

type TurnErrorHandler = Callable[[TurnContext, Exception], Awaitable[None]]


class BotAdapter(ABC):
    """Runs activities through the middleware pipeline and the bot callback."""

    def __init__(self, *, plugin_manager: pluggy.PluginManager | None = None) -> None:
        self._middleware = MiddlewareSet()
        self._hook_runtime = HookRuntime(plugin_manager or create_plugin_manager())
        self.on_turn_error: TurnErrorHandler | None = None

    def use(self, middleware: Middleware | MiddlewareHandler) -> Self:
        """Append a middleware stage; stages run in registration order."""

        self._middleware.use(middleware)
        return self

    @property
    def middleware(self) -> list[Middleware]:
        return self._middleware.middleware

    @property
    def hook_runtime(self) -> HookRuntime:
        return self._hook_runtime

    def hook_report(self) -> dict[str, list[str]]:
        return self._hook_runtime.hook_report()

    @abstractmethod
    async def send_activities(self, context: TurnContext, activities: list[Activity]) -> list[ResourceResponse]:
        """Send activities to the conversation of the turn."""

    @abstractmethod
    async def update_activity(self, context: TurnContext, activity: Activity) -> ResourceResponse | None:
        """Replace an existing activity in the conversation."""

    @abstractmethod
    async def delete_activity(self, context: TurnContext, reference: ConversationReference) -> None:
        """Delete an existing activity from the conversation."""

    async def continue_conversation(
        self,
        bot_app_id: str,
        reference: ConversationReference,
        callback: BotCallbackHandler,
    ) -> None:
        """Resume a conversation outside of an inbound request."""

        if reference is None:
            raise BotArgumentError("reference")
        if callback is None:
            raise BotArgumentError("callback")
        context = TurnContext(self, reference.get_continuation_activity())
        try:
            await self.run_pipeline(context, callback)
        finally:
            await self.release_turn_state(context)

    async def run_pipeline(self, context: TurnContext, callback: BotCallbackHandler | None) -> None:
        """Run middleware then `callback`; failures go to `on_error` hooks and `on_turn_error`."""

        if context is None:
            raise BotArgumentError("context")
        try:
            await self._middleware.receive_activity_with_status(context, callback)
        except Exception as error:
            await self._hook_runtime.notify_error(stage="turn", error=error, activity=context.activity)
            if self.on_turn_error is None:
                raise
            await self.on_turn_error(context, error)

    async def release_turn_state(self, context: TurnContext) -> None:
        """Close the turn state; release failures are reported, never raised."""

        try:
            await context.turn_state.close()
        except TurnStateReleaseError as error:
            logger.warning("turn_state.release_failed keys={}", [key for key, _ in error.failures])
            await self._hook_runtime.notify_error(stage="turn_state.close", error=error, activity=context.activity)

    def install_plugin_middleware(self) -> None:
        """Append middleware contributed through the `provide_middleware` hook."""

        for provided in self._hook_runtime.call_many_sync("provide_middleware"):
            for middleware in _unpack_middleware(provided):
                self.use(middleware)
                logger.debug("adapter.plugin_middleware middleware={}", middleware)


def _unpack_middleware(provided: object) -> list[Middleware | MiddlewareHandler]:
    if provided is None:
        return []
    if isinstance(provided, (list, tuple)):
        return list(provided)
    return [provided]  # type: ignore[list-item]
