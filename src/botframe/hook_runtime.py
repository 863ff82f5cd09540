"""Hook execution runtime with per-plugin fault isolation."""

from __future__ import annotations

import inspect
from typing import Any

import pluggy
from loguru import logger

from botframe.hookspecs import BOTFRAME_HOOK_NAMESPACE, BotFrameHookSpecs
from botframe.schema import Activity


def create_plugin_manager(*, load_entrypoints: bool = False) -> pluggy.PluginManager:
    """Build a plugin manager for the botframe namespace."""

    plugin_manager = pluggy.PluginManager(BOTFRAME_HOOK_NAMESPACE)
    plugin_manager.add_hookspecs(BotFrameHookSpecs)
    if load_entrypoints:
        loaded = plugin_manager.load_setuptools_entrypoints(BOTFRAME_HOOK_NAMESPACE)
        logger.debug("hook.entrypoints_loaded count={}", loaded)
    return plugin_manager


class HookRuntime:
    """Safe wrapper around pluggy hook execution."""

    def __init__(self, plugin_manager: pluggy.PluginManager) -> None:
        self._plugin_manager = plugin_manager

    @property
    def plugin_manager(self) -> pluggy.PluginManager:
        return self._plugin_manager

    def call_many_sync(self, hook_name: str, **kwargs: Any) -> list[Any]:
        """Run all implementations and collect successful return values."""

        results: list[Any] = []
        for impl in self._iter_hookimpls(hook_name):
            call_kwargs = self._kwargs_for_impl(impl, kwargs)
            try:
                value = impl.function(**call_kwargs)
            except Exception as error:
                self.notify_error_sync(stage=f"{hook_name}:{impl.plugin_name or '<unknown>'}", error=error, activity=None)
                continue
            if inspect.isawaitable(value):
                if inspect.iscoroutine(value):
                    value.close()
                logger.warning("hook.async_not_supported hook={} plugin={}", hook_name, impl.plugin_name or "<unknown>")
                continue
            results.append(value)
        return results

    async def notify_error(self, *, stage: str, error: Exception, activity: Activity | None) -> None:
        """Call on_error hooks, swallowing observer failures."""

        for impl in self._iter_hookimpls("on_error"):
            call_kwargs = self._kwargs_for_impl(impl, {"stage": stage, "error": error, "activity": activity})
            try:
                value = impl.function(**call_kwargs)
                if inspect.isawaitable(value):
                    await value
            except Exception:
                logger.opt(exception=True).warning(
                    "hook.on_error_failed stage={} plugin={}",
                    stage,
                    impl.plugin_name or "<unknown>",
                )

    def notify_error_sync(self, *, stage: str, error: Exception, activity: Activity | None) -> None:
        """Synchronous on_error dispatch for construction-time paths."""

        for impl in self._iter_hookimpls("on_error"):
            call_kwargs = self._kwargs_for_impl(impl, {"stage": stage, "error": error, "activity": activity})
            try:
                value = impl.function(**call_kwargs)
            except Exception:
                logger.opt(exception=True).warning(
                    "hook.on_error_failed stage={} plugin={}",
                    stage,
                    impl.plugin_name or "<unknown>",
                )
                continue
            if inspect.isawaitable(value):
                if inspect.iscoroutine(value):
                    value.close()
                logger.warning("hook.async_not_supported hook=on_error plugin={}", impl.plugin_name or "<unknown>")

    def hook_report(self) -> dict[str, list[str]]:
        """Build a hook->plugins mapping for diagnostics."""

        report: dict[str, list[str]] = {}
        for hook_name, hook_caller in sorted(self._plugin_manager.hook.__dict__.items()):
            if hook_name.startswith("_") or not hasattr(hook_caller, "get_hookimpls"):
                continue
            plugin_names = [impl.plugin_name for impl in hook_caller.get_hookimpls()]
            if plugin_names:
                report[hook_name] = plugin_names
        return report

    def _iter_hookimpls(self, hook_name: str) -> list[Any]:
        hook = getattr(self._plugin_manager.hook, hook_name, None)
        if hook is None or not hasattr(hook, "get_hookimpls"):
            return []
        # Registration order, unlike pluggy's own LIFO call order.
        return list(hook.get_hookimpls())

    @staticmethod
    def _kwargs_for_impl(impl: Any, kwargs: dict[str, Any]) -> dict[str, Any]:
        return {name: kwargs[name] for name in impl.argnames if name in kwargs}
