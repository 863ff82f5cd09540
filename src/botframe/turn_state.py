"""Per-turn service and state bag."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterator
from typing import Any, ClassVar, overload

from botframe.errors import BotArgumentError, TurnStateReleaseError


class Releasable(ABC):
    """Capability for turn state values that own resources.

    Values with `release_with_turn = False` live beyond the turn, e.g. the
    pooled connector client.
    """

    release_with_turn: ClassVar[bool] = True

    @abstractmethod
    def release(self) -> Awaitable[None] | None:
        """Free the resources held by this value."""


class TurnStateCollection:
    """Named services and state scoped to a single turn.

    Keys are unique: adding an existing key fails instead of overwriting.
    Not safe to share between concurrent turns.
    """

    def __init__(self) -> None:
        self._state: dict[str, Any] = {}

    @overload
    def get[T](self, key: type[T]) -> T | None: ...

    @overload
    def get(self, key: str) -> Any: ...

    def get(self, key: str | type[Any]) -> Any:
        if key is None:
            raise BotArgumentError("key")
        if isinstance(key, type):
            key = key.__name__
        return self._state.get(key)

    def add(self, key: str, value: Any) -> None:
        if key is None:
            raise BotArgumentError("key")
        if value is None:
            raise BotArgumentError("value")
        if key in self._state:
            raise BotArgumentError(f"Key {key} already exists")
        self._state[key] = value

    def add_service(self, value: Any) -> None:
        """Add a value under its class name."""

        if value is None:
            raise BotArgumentError("value")
        self.add(type(value).__name__, value)

    def remove(self, key: str) -> None:
        self._state.pop(key, None)

    def replace(self, key: str, value: Any) -> None:
        self.remove(key)
        self.add(key, value)

    def keys(self) -> list[str]:
        return list(self._state)

    def __contains__(self, key: object) -> bool:
        return key in self._state

    def __len__(self) -> int:
        return len(self._state)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._state))

    async def close(self) -> None:
        """Release every turn-scoped `Releasable` value.

        All releases are attempted; failures are raised together afterwards.
        """

        failures: list[tuple[str, Exception]] = []
        for key, value in list(self._state.items()):
            if not isinstance(value, Releasable) or not value.release_with_turn:
                continue
            try:
                result = value.release()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                failures.append((key, exc))
        if failures:
            raise TurnStateReleaseError(failures)
