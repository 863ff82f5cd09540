from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from botframe.adapter import BotFrameworkAdapter
from botframe.dialogs import (
    Choice,
    ComponentDialog,
    Dialog,
    DialogContext,
    DialogInstance,
    DialogSet,
    DialogTurnResult,
    DialogTurnStatus,
)
from botframe.dialogs.memory import (
    ConversationMemoryScope,
    DialogClassMemoryScope,
    DialogContextMemoryScope,
    ReadOnlyObject,
    ThisMemoryScope,
    UserMemoryScope,
)
from botframe.errors import BotArgumentError, BotFrameError, ReadOnlyScopeError
from botframe.middleware import RegisterClassMiddleware
from botframe.schema import Activity, CardAction
from botframe.state import ConversationState, MemoryStorage, UserState
from botframe.turn_context import TurnContext


class _WaitingDialog(Dialog):
    """Waits for one more turn, then ends with the text it received."""

    async def begin_dialog(self, dc: DialogContext, options: Any = None) -> DialogTurnResult:
        dc.active_dialog.state["options"] = options
        return DialogTurnResult(DialogTurnStatus.WAITING)

    async def continue_dialog(self, dc: DialogContext) -> DialogTurnResult:
        return await dc.end_dialog(dc.context.activity.text)


class _RecordingEnd(_WaitingDialog):
    def __init__(self, dialog_id: str, ended: list[tuple[str, bool]]) -> None:
        super().__init__(dialog_id)
        self.ended = ended

    async def end_dialog(self, context: TurnContext, instance: DialogInstance, cancelled: bool = False) -> None:
        self.ended.append((instance.id, cancelled))


@pytest.fixture
def context(adapter: BotFrameworkAdapter, make_activity: Callable[..., Activity]) -> TurnContext:
    return TurnContext(adapter, make_activity(text="answer"))


def test_dialog_set_rejects_duplicates() -> None:
    dialogs = DialogSet().add(_WaitingDialog("a"))

    assert "a" in dialogs
    assert len(dialogs) == 1
    with pytest.raises(BotArgumentError, match="already added"):
        dialogs.add(_WaitingDialog("a"))
    with pytest.raises(BotArgumentError):
        _WaitingDialog("")


@pytest.mark.asyncio
async def test_begin_continue_end(context: TurnContext) -> None:
    dc = DialogContext(DialogSet().add(_WaitingDialog("ask")), context, [])

    started = await dc.begin_dialog("ask", {"prompt": "name?"})
    assert started.status == DialogTurnStatus.WAITING
    assert dc.active_dialog == DialogInstance("ask", {"options": {"prompt": "name?"}})

    finished = await dc.continue_dialog()
    assert finished == DialogTurnResult(DialogTurnStatus.COMPLETE, "answer")
    assert dc.stack == []
    assert (await dc.continue_dialog()).status == DialogTurnStatus.EMPTY


@pytest.mark.asyncio
async def test_begin_unknown_dialog_fails(context: TurnContext) -> None:
    dc = DialogContext(DialogSet(), context, [])

    with pytest.raises(BotFrameError, match="wasn't found"):
        await dc.begin_dialog("missing")


@pytest.mark.asyncio
async def test_cancel_all_dialogs_ends_each_instance(context: TurnContext) -> None:
    ended: list[tuple[str, bool]] = []
    dialogs = DialogSet().add(_RecordingEnd("outer", ended)).add(_RecordingEnd("inner", ended))
    dc = DialogContext(dialogs, context, [])
    await dc.begin_dialog("outer")
    await dc.begin_dialog("inner")

    result = await dc.cancel_all_dialogs()

    assert result.status == DialogTurnStatus.CANCELLED
    assert ended == [("inner", True), ("outer", True)]
    assert (await dc.cancel_all_dialogs()).status == DialogTurnStatus.EMPTY


@pytest.mark.asyncio
async def test_component_dialog_runs_inner_stack(context: TurnContext) -> None:
    component = ComponentDialog("wizard").add_dialog(_WaitingDialog("step"))
    dc = DialogContext(DialogSet().add(component), context, [])

    assert component.initial_dialog_id == "step"
    assert (await dc.begin_dialog("wizard")).status == DialogTurnStatus.WAITING
    child = dc.child
    assert child is not None
    assert child.parent is dc
    assert child.active_dialog.id == "step"

    result = await dc.continue_dialog()
    assert result == DialogTurnResult(DialogTurnStatus.COMPLETE, "answer")
    assert dc.stack == []


@pytest.mark.asyncio
async def test_this_scope_reads_active_dialog_state(context: TurnContext) -> None:
    dc = DialogContext(DialogSet().add(_WaitingDialog("ask")), context, [])
    scope = ThisMemoryScope()

    assert scope.get_memory(dc) is None
    await dc.begin_dialog("ask", 1)
    assert scope.get_memory(dc) == {"options": 1}
    with pytest.raises(ReadOnlyScopeError):
        scope.set_memory(dc, {})
    with pytest.raises(BotArgumentError):
        scope.get_memory(None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_dialog_class_scope_binds_container_or_parent(context: TurnContext) -> None:
    component = ComponentDialog("wizard").add_dialog(_WaitingDialog("step"))
    dc = DialogContext(DialogSet().add(component).add(_WaitingDialog("plain")), context, [])
    scope = DialogClassMemoryScope()

    assert scope.get_memory(dc) is None

    await dc.begin_dialog("wizard")
    bound = scope.get_memory(dc)
    assert isinstance(bound, ReadOnlyObject)
    assert bound.target is component
    assert bound.id == "wizard"
    with pytest.raises(ReadOnlyScopeError):
        bound.id = "changed"

    # Inside the component, the scope binds to the owning container.
    assert scope.get_memory(dc.child).target is component

    await dc.cancel_all_dialogs()
    await dc.begin_dialog("plain")
    assert scope.get_memory(dc).target.id == "plain"


@pytest.mark.asyncio
async def test_dialog_context_scope(context: TurnContext) -> None:
    component = ComponentDialog("wizard").add_dialog(_WaitingDialog("step"))
    dc = DialogContext(DialogSet().add(component), context, [])
    scope = DialogContextMemoryScope()

    await dc.begin_dialog("wizard")
    dc.child.stack.append(DialogInstance("ActionScope[step]"))

    assert scope.get_memory(dc) == {"stack": ["ActionScope[step]"], "activeDialog": "wizard", "parent": None}
    assert scope.get_memory(dc.child) == {"stack": ["ActionScope[step]"], "activeDialog": "step", "parent": "wizard"}
    with pytest.raises(ReadOnlyScopeError):
        scope.set_memory(dc, {})


@pytest.mark.asyncio
async def test_bot_state_scopes_read_registered_state(context: TurnContext) -> None:
    storage = MemoryStorage({"test/users/u1": {"name": "Ada"}})
    user_state = UserState(storage)
    conversation_state = ConversationState(storage)

    async def done() -> None:
        return None

    await RegisterClassMiddleware(user_state).on_turn(context, done)
    context.turn_state.add_service(conversation_state)
    dc = DialogContext(DialogSet(), context, [])
    user_scope = UserMemoryScope()
    conversation_scope = ConversationMemoryScope()

    assert user_scope.get_memory(dc) is None
    await user_scope.load(dc)
    await conversation_scope.load(dc)
    assert user_scope.get_memory(dc) == {"name": "Ada"}
    assert conversation_scope.get_memory(dc) == {}

    user_scope.get_memory(dc)["visits"] = 1
    await user_scope.save_changes(dc)
    assert await storage.read(["test/users/u1"]) == {"test/users/u1": {"name": "Ada", "visits": 1}}
    with pytest.raises(ReadOnlyScopeError):
        user_scope.set_memory(dc, {})


def test_choice_accepts_positional_value() -> None:
    choice = Choice("red", synonyms=["crimson"], action=CardAction(type="imBack", title="Red", value="red"))

    assert choice.value == "red"
    assert choice.to_wire() == {
        "value": "red",
        "synonyms": ["crimson"],
        "action": {"type": "imBack", "title": "Red", "value": "red"},
    }
