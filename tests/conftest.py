from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from botframe.adapter import BotFrameworkAdapter
from botframe.auth import AppCredentials, SimpleCredentialProvider
from botframe.connector import PooledConnectorClientFactory
from botframe.credentials import AppCredentialCache
from botframe.hook_runtime import create_plugin_manager
from botframe.schema import Activity, ChannelAccount, ConversationAccount

SERVICE_URL = "https://smba.example.com"


class StaticTokenCredentials(AppCredentials):
    """Credentials that never call the login service."""

    async def get_token(self, *, force_refresh: bool = False) -> str | None:
        if self.is_empty:
            return None
        return f"token-{self.app_id}"


class ConnectorRecorder:
    """Fake connector service behind an httpx mock transport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.overrides: dict[tuple[str, str], httpx.Response] = {}
        self.transport = httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        override = self.overrides.get((request.method, request.url.path))
        if override is not None:
            return override

        path = request.url.path
        if request.method == "POST" and path == "/v3/conversations":
            return httpx.Response(200, json={"id": "conv-new", "activityId": "act-new"})
        if request.method in ("POST", "PUT") and "/activities" in path:
            return httpx.Response(200, json={"id": f"sent-{len(self.requests)}"})
        if request.method == "GET" and path.endswith("/members"):
            return httpx.Response(200, json=[{"id": "u1", "name": "User One"}, {"id": "b1", "name": "Bot"}])
        if request.method == "GET" and path == "/v3/conversations":
            return httpx.Response(
                200,
                json={"continuationToken": "next", "conversations": [{"id": "c1", "members": [{"id": "u1"}]}]},
            )
        return httpx.Response(200)

    def payload(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)

    def paths(self) -> list[tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]


@pytest.fixture
def connector() -> ConnectorRecorder:
    return ConnectorRecorder()


@pytest.fixture
def make_adapter(connector: ConnectorRecorder) -> Callable[..., BotFrameworkAdapter]:
    def _make(app_id: str | None = None, password: str | None = None, **kwargs: Any) -> BotFrameworkAdapter:
        provider = SimpleCredentialProvider(app_id, password)
        kwargs.setdefault("credential_cache", AppCredentialCache(provider, credentials_factory=StaticTokenCredentials))
        kwargs.setdefault("connector_factory", PooledConnectorClientFactory(transport=connector.transport))
        kwargs.setdefault("plugin_manager", create_plugin_manager())
        return BotFrameworkAdapter(provider, **kwargs)

    return _make


@pytest.fixture
def adapter(make_adapter: Callable[..., BotFrameworkAdapter]) -> BotFrameworkAdapter:
    return make_adapter()


@pytest.fixture
def make_activity() -> Callable[..., Activity]:
    def _make(**overrides: Any) -> Activity:
        fields: dict[str, Any] = {
            "type": "message",
            "id": "act-1",
            "text": "hello",
            "channel_id": "test",
            "service_url": SERVICE_URL,
            "from_property": ChannelAccount(id="u1", name="User One"),
            "recipient": ChannelAccount(id="b1", name="Bot"),
            "conversation": ConversationAccount(id="conv-1"),
        }
        fields.update(overrides)
        return Activity(**fields)

    return _make
