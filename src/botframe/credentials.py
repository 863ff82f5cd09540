"""Per-application credential cache with pluggable eviction."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from loguru import logger

from botframe.auth import AppCredentials, CredentialProvider

type CredentialsFactory = Callable[[str, str | None], AppCredentials]
type EvictionListener = Callable[[str], None]


class EvictionPolicy(Protocol):
    """Decides which cached app ids to drop."""

    def on_hit(self, app_id: str) -> None: ...

    def on_put(self, app_id: str) -> list[str]:
        """Record a new entry and return the app ids to evict."""
        ...

    def is_expired(self, app_id: str) -> bool: ...

    def forget(self, app_id: str) -> None: ...


class UnboundedPolicy:
    """Keep every entry for the lifetime of the process."""

    def on_hit(self, app_id: str) -> None:
        return None

    def on_put(self, app_id: str) -> list[str]:
        return []

    def is_expired(self, app_id: str) -> bool:
        return False

    def forget(self, app_id: str) -> None:
        return None


class LRUPolicy:
    """Bound the cache to `max_entries`, dropping the least recently used."""

    def __init__(self, max_entries: int) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._order: OrderedDict[str, None] = OrderedDict()

    def on_hit(self, app_id: str) -> None:
        if app_id in self._order:
            self._order.move_to_end(app_id)

    def on_put(self, app_id: str) -> list[str]:
        self._order[app_id] = None
        self._order.move_to_end(app_id)
        evicted: list[str] = []
        while len(self._order) > self.max_entries:
            oldest, _ = self._order.popitem(last=False)
            evicted.append(oldest)
        return evicted

    def is_expired(self, app_id: str) -> bool:
        return False

    def forget(self, app_id: str) -> None:
        self._order.pop(app_id, None)


class TTLPolicy:
    """Expire entries `ttl_seconds` after they were stored."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._stored_at: dict[str, float] = {}

    def on_hit(self, app_id: str) -> None:
        return None

    def on_put(self, app_id: str) -> list[str]:
        self._stored_at[app_id] = self._clock()
        return []

    def is_expired(self, app_id: str) -> bool:
        stored_at = self._stored_at.get(app_id)
        return stored_at is not None and self._clock() - stored_at >= self.ttl_seconds

    def forget(self, app_id: str) -> None:
        self._stored_at.pop(app_id, None)


class AppCredentialCache:
    """Lazily mint and memoize `AppCredentials` keyed by app id.

    There is no per-key lock: two concurrent misses for the same app id may
    both ask the credential provider, and the later result replaces the
    earlier one in the cache.
    """

    def __init__(
        self,
        credential_provider: CredentialProvider,
        *,
        policy: EvictionPolicy | None = None,
        credentials_factory: CredentialsFactory | None = None,
    ) -> None:
        self._credential_provider = credential_provider
        self._policy: EvictionPolicy = policy or UnboundedPolicy()
        self._factory: CredentialsFactory = credentials_factory or AppCredentials
        self._entries: dict[str, AppCredentials] = {}
        self._listeners: list[EvictionListener] = []

    def add_eviction_listener(self, listener: EvictionListener) -> None:
        """Call `listener(app_id)` whenever an app id leaves the cache."""
        self._listeners.append(listener)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, app_id: object) -> bool:
        return app_id in self._entries

    def get_cached(self, app_id: str) -> AppCredentials | None:
        cached = self._entries.get(app_id)
        if cached is None:
            return None
        if self._policy.is_expired(app_id):
            self._drop(app_id)
            return None
        self._policy.on_hit(app_id)
        return cached

    async def get_app_credentials(self, app_id: str | None) -> AppCredentials:
        if not app_id:
            return AppCredentials.empty()

        cached = self.get_cached(app_id)
        if cached is not None:
            return cached

        password = await self._credential_provider.get_app_password(app_id)
        credentials = self._factory(app_id, password)
        if app_id in self._entries:
            logger.debug("credentials.concurrent_fetch app_id={}", app_id)
        self._entries[app_id] = credentials
        for evicted in self._policy.on_put(app_id):
            self._drop(evicted)
        logger.debug("credentials.cached app_id={} size={}", app_id, len(self._entries))
        return credentials

    def clear(self) -> None:
        for app_id in list(self._entries):
            self._drop(app_id)

    def _drop(self, app_id: str) -> None:
        self._entries.pop(app_id, None)
        self._policy.forget(app_id)
        logger.debug("credentials.evicted app_id={}", app_id)
        for listener in self._listeners:
            listener(app_id)
