"""Dialogs, dialog sets and the dialog stack of a turn."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from botframe.errors import BotArgumentError, BotFrameError
from botframe.turn_context import TurnContext


class DialogTurnStatus(StrEnum):
    EMPTY = "empty"
    WAITING = "waiting"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DialogTurnResult:
    status: DialogTurnStatus
    result: Any = None


@dataclass
class DialogInstance:
    """One entry of the dialog stack: the dialog id and its persisted state."""

    id: str
    state: dict[str, Any] = field(default_factory=dict)


class Dialog(ABC):
    def __init__(self, dialog_id: str) -> None:
        if not dialog_id:
            raise BotArgumentError("dialog_id")
        self.id = dialog_id

    @abstractmethod
    async def begin_dialog(self, dc: DialogContext, options: Any = None) -> DialogTurnResult:
        """Start the dialog; it is already on top of the stack."""

    async def continue_dialog(self, dc: DialogContext) -> DialogTurnResult:
        return await dc.end_dialog()

    async def resume_dialog(self, dc: DialogContext, result: Any = None) -> DialogTurnResult:
        """Called when a dialog started by this one ends."""
        return await dc.end_dialog(result)

    async def end_dialog(self, context: TurnContext, instance: DialogInstance, cancelled: bool = False) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"


class DialogSet:
    """Dialogs addressable by id."""

    def __init__(self) -> None:
        self._dialogs: dict[str, Dialog] = {}

    def add(self, dialog: Dialog) -> DialogSet:
        if dialog is None:
            raise BotArgumentError("dialog")
        if dialog.id in self._dialogs:
            raise BotArgumentError(f"DialogSet.add(): a dialog with an id of '{dialog.id}' already added.")
        self._dialogs[dialog.id] = dialog
        return self

    def find(self, dialog_id: str) -> Dialog | None:
        if not dialog_id:
            raise BotArgumentError("dialog_id")
        return self._dialogs.get(dialog_id)

    def __contains__(self, dialog_id: object) -> bool:
        return dialog_id in self._dialogs

    def __len__(self) -> int:
        return len(self._dialogs)


class DialogContainer(Dialog):
    """A dialog that owns an inner dialog set and stack."""

    def __init__(self, dialog_id: str) -> None:
        super().__init__(dialog_id)
        self.dialogs = DialogSet()

    def add_dialog(self, dialog: Dialog) -> DialogContainer:
        self.dialogs.add(dialog)
        return self

    def find_dialog(self, dialog_id: str) -> Dialog | None:
        return self.dialogs.find(dialog_id)

    @abstractmethod
    def create_child_context(self, dc: DialogContext) -> DialogContext | None:
        """Dialog context of the inner stack, or None when it has not started."""


class ComponentDialog(DialogContainer):
    """Container that runs `initial_dialog_id` on its own inner stack."""

    PERSISTED_DIALOG_STATE = "dialogs"

    def __init__(self, dialog_id: str, initial_dialog_id: str | None = None) -> None:
        super().__init__(dialog_id)
        self.initial_dialog_id = initial_dialog_id

    def add_dialog(self, dialog: Dialog) -> ComponentDialog:
        super().add_dialog(dialog)
        if self.initial_dialog_id is None:
            self.initial_dialog_id = dialog.id
        return self

    def create_child_context(self, dc: DialogContext) -> DialogContext | None:
        instance = dc.active_dialog
        if instance is None:
            return None
        stack = instance.state.get(self.PERSISTED_DIALOG_STATE)
        if stack is None:
            return None
        return DialogContext(self.dialogs, dc.context, stack, parent=dc)

    async def begin_dialog(self, dc: DialogContext, options: Any = None) -> DialogTurnResult:
        if not self.initial_dialog_id:
            raise BotFrameError(f"ComponentDialog {self.id} has no dialogs")
        instance = dc.active_dialog
        assert instance is not None
        instance.state[self.PERSISTED_DIALOG_STATE] = []
        inner = DialogContext(self.dialogs, dc.context, instance.state[self.PERSISTED_DIALOG_STATE], parent=dc)
        turn_result = await inner.begin_dialog(self.initial_dialog_id, options)
        return await self._complete_inner(dc, turn_result)

    async def continue_dialog(self, dc: DialogContext) -> DialogTurnResult:
        inner = self.create_child_context(dc)
        if inner is None:
            return await dc.end_dialog()
        turn_result = await inner.continue_dialog()
        return await self._complete_inner(dc, turn_result)

    async def _complete_inner(self, dc: DialogContext, turn_result: DialogTurnResult) -> DialogTurnResult:
        if turn_result.status == DialogTurnStatus.WAITING:
            return turn_result
        return await dc.end_dialog(turn_result.result)


class DialogContext:
    """The dialog stack of one turn; top of stack is index 0."""

    def __init__(
        self,
        dialogs: DialogSet,
        context: TurnContext,
        stack: list[DialogInstance],
        parent: DialogContext | None = None,
    ) -> None:
        if dialogs is None:
            raise BotArgumentError("dialogs")
        if context is None:
            raise BotArgumentError("context")
        self.dialogs = dialogs
        self.context = context
        self.stack = stack
        self.parent = parent

    @property
    def active_dialog(self) -> DialogInstance | None:
        return self.stack[0] if self.stack else None

    @property
    def child(self) -> DialogContext | None:
        instance = self.active_dialog
        if instance is None:
            return None
        dialog = self.find_dialog(instance.id)
        if isinstance(dialog, DialogContainer):
            return dialog.create_child_context(self)
        return None

    def find_dialog(self, dialog_id: str) -> Dialog | None:
        dialog = self.dialogs.find(dialog_id)
        if dialog is None and self.parent is not None:
            return self.parent.find_dialog(dialog_id)
        return dialog

    async def begin_dialog(self, dialog_id: str, options: Any = None) -> DialogTurnResult:
        if not dialog_id:
            raise BotArgumentError("dialog_id")
        dialog = self.find_dialog(dialog_id)
        if dialog is None:
            raise BotFrameError(f"DialogContext.begin_dialog(): a dialog with an id of '{dialog_id}' wasn't found.")
        self.stack.insert(0, DialogInstance(id=dialog_id))
        logger.debug("dialog.begin id={} depth={}", dialog_id, len(self.stack))
        return await dialog.begin_dialog(self, options)

    async def continue_dialog(self) -> DialogTurnResult:
        instance = self.active_dialog
        if instance is None:
            return DialogTurnResult(DialogTurnStatus.EMPTY)
        dialog = self._dialog_for(instance)
        return await dialog.continue_dialog(self)

    async def end_dialog(self, result: Any = None) -> DialogTurnResult:
        await self._pop(cancelled=False)
        instance = self.active_dialog
        if instance is None:
            return DialogTurnResult(DialogTurnStatus.COMPLETE, result)
        dialog = self._dialog_for(instance)
        return await dialog.resume_dialog(self, result)

    async def cancel_all_dialogs(self) -> DialogTurnResult:
        if not self.stack:
            return DialogTurnResult(DialogTurnStatus.EMPTY)
        while self.stack:
            await self._pop(cancelled=True)
        return DialogTurnResult(DialogTurnStatus.CANCELLED)

    async def _pop(self, *, cancelled: bool) -> None:
        instance = self.active_dialog
        if instance is None:
            return
        dialog = self.find_dialog(instance.id)
        if dialog is not None:
            await dialog.end_dialog(self.context, instance, cancelled)
        self.stack.pop(0)
        logger.debug("dialog.end id={} cancelled={}", instance.id, cancelled)

    def _dialog_for(self, instance: DialogInstance) -> Dialog:
        dialog = self.find_dialog(instance.id)
        if dialog is None:
            raise BotFrameError(f"Failed to find dialog with id '{instance.id}' on the stack.")
        return dialog
