"""Named memory scopes resolving paths like `user.name` or `this.value`."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from botframe.dialogs.dialog import DialogContainer, DialogContext
from botframe.errors import BotArgumentError, ReadOnlyScopeError
from botframe.state import BotState, ConversationState, UserState


class ScopePath:
    USER = "user"
    CONVERSATION = "conversation"
    DIALOG = "dialog"
    DIALOG_CLASS = "dialogclass"
    DIALOG_CONTEXT = "dialogcontext"
    THIS = "this"
    CLASS = "class"
    SETTINGS = "settings"
    TURN = "turn"


class ReadOnlyObject:
    """Read-only view over an object or mapping."""

    __slots__ = ("_target",)

    def __init__(self, target: Any) -> None:
        object.__setattr__(self, "_target", target)

    @property
    def target(self) -> Any:
        return object.__getattribute__(self, "_target")

    def __getattr__(self, name: str) -> Any:
        target = object.__getattribute__(self, "_target")
        if isinstance(target, Mapping):
            try:
                return target[name]
            except KeyError:
                raise AttributeError(name) from None
        return getattr(target, name)

    def __getitem__(self, key: str) -> Any:
        target = object.__getattribute__(self, "_target")
        if isinstance(target, Mapping):
            return target[key]
        try:
            return getattr(target, key)
        except AttributeError:
            raise KeyError(key) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise ReadOnlyScopeError(f"Cannot set '{name}' on a read-only object")

    def __setitem__(self, key: str, value: Any) -> None:
        raise ReadOnlyScopeError(f"Cannot set '{key}' on a read-only object")

    def __delattr__(self, name: str) -> None:
        raise ReadOnlyScopeError(f"Cannot delete '{name}' on a read-only object")

    def __repr__(self) -> str:
        return f"ReadOnlyObject({object.__getattribute__(self, '_target')!r})"


class MemoryScope(ABC):
    """A named root in the dialog memory, backed by some object of the turn."""

    def __init__(self, name: str, include_in_snapshot: bool = True) -> None:
        self.name = name
        self.include_in_snapshot = include_in_snapshot

    @abstractmethod
    def get_memory(self, dc: DialogContext) -> Any:
        """Get the backing memory for this scope."""

    @abstractmethod
    def set_memory(self, dc: DialogContext, memory: Any) -> None:
        """Replace the backing memory for this scope."""

    async def load(self, dc: DialogContext, force: bool = False) -> None:
        return None

    async def save_changes(self, dc: DialogContext, force: bool = False) -> None:
        return None

    async def delete(self, dc: DialogContext) -> None:
        return None


def _require_dc(dc: DialogContext | None) -> DialogContext:
    if dc is None:
        raise BotArgumentError("dialog_context cannot be None.")
    return dc


class ThisMemoryScope(MemoryScope):
    """`this` -> state of the active dialog."""

    def __init__(self) -> None:
        super().__init__(ScopePath.THIS, include_in_snapshot=False)

    def get_memory(self, dc: DialogContext) -> Any:
        dc = _require_dc(dc)
        if dc.active_dialog is None:
            return None
        return dc.active_dialog.state

    def set_memory(self, dc: DialogContext, memory: Any) -> None:
        raise ReadOnlyScopeError("You can't modify the this scope.")


class DialogClassMemoryScope(MemoryScope):
    """`dialogclass` -> the dialog object that owns the current stack."""

    def __init__(self) -> None:
        super().__init__(ScopePath.DIALOG_CLASS, include_in_snapshot=True)

    def get_memory(self, dc: DialogContext) -> Any:
        dc = _require_dc(dc)

        # An active container dialog binds directly.
        if dc.active_dialog is not None:
            dialog = dc.find_dialog(dc.active_dialog.id)
            if isinstance(dialog, DialogContainer):
                return ReadOnlyObject(dialog)

        # Otherwise bind to the parent, or with no parent to the active dialog.
        owner = dc.parent if dc.parent is not None else dc
        if owner.active_dialog is None:
            return None
        return ReadOnlyObject(dc.find_dialog(owner.active_dialog.id))

    def set_memory(self, dc: DialogContext, memory: Any) -> None:
        raise ReadOnlyScopeError("You can't modify the dialogclass scope")


class DialogContextMemoryScope(MemoryScope):
    """`dialogcontext` -> stack, active dialog and parent dialog ids."""

    STACK_KEY = "stack"
    ACTIVE_DIALOG_KEY = "activeDialog"
    PARENT_KEY = "parent"

    def __init__(self) -> None:
        super().__init__(ScopePath.DIALOG_CONTEXT, include_in_snapshot=True)

    def get_memory(self, dc: DialogContext) -> dict[str, Any]:
        dc = _require_dc(dc)

        current = dc
        while (child := current.child) is not None:
            current = child

        # Walk leaf to root; the first entry is the top of the stack.
        stack: list[str] = []
        node: DialogContext | None = current
        while node is not None:
            stack.extend(item.id for item in node.stack if item.id.startswith("ActionScope["))
            node = node.parent

        parent_active = dc.parent.active_dialog if dc.parent is not None else None
        return {
            self.STACK_KEY: stack,
            self.ACTIVE_DIALOG_KEY: dc.active_dialog.id if dc.active_dialog is not None else None,
            self.PARENT_KEY: parent_active.id if parent_active is not None else None,
        }

    def set_memory(self, dc: DialogContext, memory: Any) -> None:
        raise ReadOnlyScopeError("You can't modify the dialogcontext scope")


class BotStateMemoryScope[S: BotState](MemoryScope):
    """Scope backed by the cached state of a `BotState` registered in turn state."""

    def __init__(self, state_type: type[S], name: str) -> None:
        super().__init__(name, include_in_snapshot=True)
        self.state_type = state_type

    def _bot_state(self, dc: DialogContext) -> S | None:
        return dc.context.turn_state.get(self.state_type)

    def get_memory(self, dc: DialogContext) -> Any:
        dc = _require_dc(dc)
        bot_state = self._bot_state(dc)
        if bot_state is None:
            return None
        cached = bot_state.get_cached_state(dc.context)
        return cached.state if cached is not None else None

    def set_memory(self, dc: DialogContext, memory: Any) -> None:
        raise ReadOnlyScopeError("You cannot replace the root BotState object")

    async def load(self, dc: DialogContext, force: bool = False) -> None:
        bot_state = self._bot_state(_require_dc(dc))
        if bot_state is not None:
            await bot_state.load(dc.context, force)

    async def save_changes(self, dc: DialogContext, force: bool = False) -> None:
        bot_state = self._bot_state(_require_dc(dc))
        if bot_state is not None:
            await bot_state.save_changes(dc.context, force)


class UserMemoryScope(BotStateMemoryScope[UserState]):
    """`user` -> UserState."""

    def __init__(self) -> None:
        super().__init__(UserState, ScopePath.USER)


class ConversationMemoryScope(BotStateMemoryScope[ConversationState]):
    """`conversation` -> ConversationState."""

    def __init__(self) -> None:
        super().__init__(ConversationState, ScopePath.CONVERSATION)
