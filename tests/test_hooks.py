from __future__ import annotations

import importlib
from collections.abc import Callable
from pathlib import Path
from types import ModuleType

import pytest

from botframe.adapter import BotFrameworkAdapter
from botframe.errors import InvokeResponseMissingError
from botframe.hook_runtime import HookRuntime, create_plugin_manager
from botframe.hookspecs import hookimpl
from botframe.schema import Activity
from botframe.turn_context import TurnContext
from botframe.turn_state import Releasable


@pytest.fixture
def recording_hooks(monkeypatch: pytest.MonkeyPatch) -> ModuleType:
    monkeypatch.syspath_prepend(str(Path(__file__).parent))
    return importlib.import_module("fixtures_plugins.recording_hooks")


class _BrokenProvider:
    @hookimpl
    def provide_middleware(self) -> object:
        raise RuntimeError("cannot build middleware")


class _AsyncObserver:
    def __init__(self) -> None:
        self.stages: list[str] = []

    @hookimpl
    async def on_error(self, stage: str, error: Exception) -> None:
        self.stages.append(stage)


class _FailingObserver:
    @hookimpl
    def on_error(self, stage: str) -> None:
        raise RuntimeError(f"observer failed at {stage}")


class _BrokenResource(Releasable):
    def release(self) -> None:
        raise RuntimeError("release failed")


@pytest.mark.asyncio
async def test_plugin_middleware_runs_and_observes_errors(
    recording_hooks: ModuleType,
    make_adapter: Callable[..., BotFrameworkAdapter],
    make_activity: Callable[..., Activity],
) -> None:
    plugin = recording_hooks.RecordingHooksPlugin()
    plugin_manager = create_plugin_manager()
    plugin_manager.register(plugin, name="recording")
    adapter = make_adapter(plugin_manager=plugin_manager)

    async def bot(_: TurnContext) -> None:
        raise ValueError("bot failed")

    with pytest.raises(ValueError, match="bot failed"):
        await adapter.process_activity(None, make_activity(text="ping"), bot)

    assert adapter.middleware[-1] is plugin
    assert plugin.turns == ["ping"]
    assert plugin.errors == [("turn", "bot failed")]
    assert adapter.hook_report() == {"on_error": ["recording"], "provide_middleware": ["recording"]}


def test_failing_provider_is_reported_and_skipped(
    recording_hooks: ModuleType, make_adapter: Callable[..., BotFrameworkAdapter]
) -> None:
    plugin = recording_hooks.RecordingHooksPlugin()
    plugin_manager = create_plugin_manager()
    plugin_manager.register(plugin, name="recording")
    plugin_manager.register(_BrokenProvider(), name="broken")

    adapter = make_adapter(plugin_manager=plugin_manager)

    assert adapter.middleware[-1] is plugin
    assert plugin.errors == [("provide_middleware:broken", "cannot build middleware")]


@pytest.mark.asyncio
async def test_missing_invoke_response_is_reported_to_observers(
    recording_hooks: ModuleType,
    make_adapter: Callable[..., BotFrameworkAdapter],
    make_activity: Callable[..., Activity],
) -> None:
    plugin = recording_hooks.RecordingHooksPlugin()
    plugin_manager = create_plugin_manager()
    plugin_manager.register(plugin, name="recording")
    adapter = make_adapter(plugin_manager=plugin_manager)

    async def bot(_: TurnContext) -> None:
        return None

    with pytest.raises(InvokeResponseMissingError):
        await adapter.process_activity(None, make_activity(type="invoke", name="task/fetch"), bot)

    assert plugin.errors == [("turn", "Bot failed to return a valid 'invokeResponse' activity.")]


@pytest.mark.asyncio
async def test_async_observers_are_awaited_and_failures_swallowed(
    make_adapter: Callable[..., BotFrameworkAdapter], make_activity: Callable[..., Activity]
) -> None:
    observer = _AsyncObserver()
    plugin_manager = create_plugin_manager()
    plugin_manager.register(_FailingObserver(), name="failing")
    plugin_manager.register(observer, name="async")
    adapter = make_adapter(plugin_manager=plugin_manager)

    async def bot(context: TurnContext) -> None:
        context.turn_state.add("broken", _BrokenResource())

    await adapter.process_activity(None, make_activity(), bot)

    assert observer.stages == ["turn_state.close"]


def test_call_many_sync_skips_async_implementations() -> None:
    class _AsyncProvider:
        @hookimpl
        async def provide_middleware(self) -> object:
            return object()

    class _SyncProvider:
        @hookimpl
        def provide_middleware(self) -> object:
            return "stage"

    plugin_manager = create_plugin_manager()
    plugin_manager.register(_AsyncProvider(), name="async")
    plugin_manager.register(_SyncProvider(), name="sync")

    assert HookRuntime(plugin_manager).call_many_sync("provide_middleware") == ["stage"]
    assert HookRuntime(plugin_manager).call_many_sync("unknown_hook") == []
