"""Bot state persisted per user or per conversation."""

from __future__ import annotations

import copy
import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from botframe.errors import BotArgumentError
from botframe.turn_context import TurnContext


class Storage(Protocol):
    async def read(self, keys: Sequence[str]) -> dict[str, Any]: ...

    async def write(self, changes: Mapping[str, Any]) -> None: ...

    async def delete(self, keys: Sequence[str]) -> None: ...


class MemoryStorage:
    """In-process storage; documents are copied in and out."""

    def __init__(self, dictionary: dict[str, Any] | None = None) -> None:
        self._memory: dict[str, Any] = dictionary if dictionary is not None else {}

    async def read(self, keys: Sequence[str]) -> dict[str, Any]:
        if keys is None:
            raise BotArgumentError("keys")
        return {key: copy.deepcopy(self._memory[key]) for key in keys if key in self._memory}

    async def write(self, changes: Mapping[str, Any]) -> None:
        if changes is None:
            raise BotArgumentError("changes")
        for key, value in changes.items():
            self._memory[key] = copy.deepcopy(value)

    async def delete(self, keys: Sequence[str]) -> None:
        for key in keys:
            self._memory.pop(key, None)


def _state_hash(state: Mapping[str, Any]) -> str:
    encoded = json.dumps(state, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


@dataclass
class CachedBotState:
    """State loaded for the current turn plus the hash it was loaded with."""

    state: dict[str, Any] = field(default_factory=dict)
    hash: str = ""

    def __post_init__(self) -> None:
        if not self.hash:
            self.hash = _state_hash(self.state)

    @property
    def is_changed(self) -> bool:
        return self.hash != _state_hash(self.state)


class BotState(ABC):
    """Load, cache and save one state document for the turn."""

    def __init__(self, storage: Storage) -> None:
        if storage is None:
            raise BotArgumentError("storage")
        self._storage = storage
        self._context_service_key = f"{type(self).__name__}.CachedState"

    def get_cached_state(self, context: TurnContext) -> CachedBotState | None:
        if context is None:
            raise BotArgumentError("context")
        return context.turn_state.get(self._context_service_key)

    async def load(self, context: TurnContext, force: bool = False) -> None:
        cached = self.get_cached_state(context)
        if cached is not None and not force:
            return
        storage_key = self.get_storage_key(context)
        items = await self._storage.read([storage_key])
        state = items.get(storage_key) or {}
        context.turn_state.replace(self._context_service_key, CachedBotState(state=state))
        logger.debug("state.loaded key={}", storage_key)

    async def save_changes(self, context: TurnContext, force: bool = False) -> None:
        cached = self.get_cached_state(context)
        if cached is None or not (force or cached.is_changed):
            return
        storage_key = self.get_storage_key(context)
        await self._storage.write({storage_key: cached.state})
        cached.hash = _state_hash(cached.state)
        logger.debug("state.saved key={}", storage_key)

    async def clear_state(self, context: TurnContext) -> None:
        """Empty the cached state; the change is written on the next save."""

        cached = CachedBotState()
        cached.hash = ""
        context.turn_state.replace(self._context_service_key, cached)

    async def delete(self, context: TurnContext) -> None:
        context.turn_state.replace(self._context_service_key, CachedBotState())
        await self._storage.delete([self.get_storage_key(context)])

    @abstractmethod
    def get_storage_key(self, context: TurnContext) -> str:
        """Storage key of the document for this turn."""


class UserState(BotState):
    """State scoped to the user sending the activity."""

    def get_storage_key(self, context: TurnContext) -> str:
        activity = context.activity
        if not activity.channel_id:
            raise BotArgumentError("invalid activity: missing channel_id")
        if activity.from_property is None or not activity.from_property.id:
            raise BotArgumentError("invalid activity: missing from.id")
        return f"{activity.channel_id}/users/{activity.from_property.id}"


class ConversationState(BotState):
    """State scoped to the conversation of the activity."""

    def get_storage_key(self, context: TurnContext) -> str:
        activity = context.activity
        if not activity.channel_id:
            raise BotArgumentError("invalid activity: missing channel_id")
        if activity.conversation is None or not activity.conversation.id:
            raise BotArgumentError("invalid activity: missing conversation.id")
        return f"{activity.channel_id}/conversations/{activity.conversation.id}"
