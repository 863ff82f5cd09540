"""Async REST client for the channel connector service."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from loguru import logger

from botframe.auth import AppCredentials
from botframe.errors import BotArgumentError, ConnectorError, InvalidServiceUrlError
from botframe.schema import (
    Activity,
    ChannelAccount,
    ConversationParameters,
    ConversationResourceResponse,
    ConversationsResult,
    ResourceResponse,
)
from botframe.turn_state import Releasable

USER_AGENT = "botframe/0.1.0"


def validate_service_url(service_url: str | None) -> str:
    """Return the normalized service URL or raise `InvalidServiceUrlError`."""

    if not service_url:
        raise InvalidServiceUrlError(service_url) from ValueError("service url is empty")
    try:
        url = httpx.URL(service_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise InvalidServiceUrlError(service_url) from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidServiceUrlError(service_url) from ValueError(f"unsupported url: {service_url}")
    return str(url).rstrip("/")


class Conversations:
    """Operations of the `/v3/conversations` resource."""

    def __init__(self, client: RestConnectorClient) -> None:
        self._client = client

    async def send_to_conversation(self, activity: Activity) -> ResourceResponse | None:
        conversation_id = _conversation_id(activity)
        data = await self._client.request("POST", f"/v3/conversations/{_q(conversation_id)}/activities", json=activity.to_wire())
        return ResourceResponse.model_validate(data) if data else None

    async def reply_to_activity(self, activity: Activity) -> ResourceResponse | None:
        conversation_id = _conversation_id(activity)
        if not activity.reply_to_id:
            raise BotArgumentError("activity.reply_to_id")
        path = f"/v3/conversations/{_q(conversation_id)}/activities/{_q(activity.reply_to_id)}"
        data = await self._client.request("POST", path, json=activity.to_wire())
        return ResourceResponse.model_validate(data) if data else None

    async def update_activity(self, activity: Activity) -> ResourceResponse | None:
        conversation_id = _conversation_id(activity)
        if not activity.id:
            raise BotArgumentError("activity.id")
        path = f"/v3/conversations/{_q(conversation_id)}/activities/{_q(activity.id)}"
        data = await self._client.request("PUT", path, json=activity.to_wire())
        return ResourceResponse.model_validate(data) if data else None

    async def delete_activity(self, conversation_id: str, activity_id: str) -> None:
        await self._client.request("DELETE", f"/v3/conversations/{_q(conversation_id)}/activities/{_q(activity_id)}")

    async def create_conversation(self, parameters: ConversationParameters) -> ConversationResourceResponse:
        data = await self._client.request("POST", "/v3/conversations", json=parameters.to_wire())
        return ConversationResourceResponse.model_validate(data or {})

    async def get_conversations(self, continuation_token: str | None = None) -> ConversationsResult:
        params = {"continuationToken": continuation_token} if continuation_token else None
        data = await self._client.request("GET", "/v3/conversations", params=params)
        return ConversationsResult.model_validate(data or {})

    async def get_conversation_members(self, conversation_id: str) -> list[ChannelAccount]:
        data = await self._client.request("GET", f"/v3/conversations/{_q(conversation_id)}/members")
        return [ChannelAccount.model_validate(item) for item in data or []]

    async def get_activity_members(self, conversation_id: str, activity_id: str) -> list[ChannelAccount]:
        path = f"/v3/conversations/{_q(conversation_id)}/activities/{_q(activity_id)}/members"
        data = await self._client.request("GET", path)
        return [ChannelAccount.model_validate(item) for item in data or []]

    async def delete_conversation_member(self, conversation_id: str, member_id: str) -> None:
        await self._client.request("DELETE", f"/v3/conversations/{_q(conversation_id)}/members/{_q(member_id)}")


class RestConnectorClient(Releasable):
    """Connector client bound to one service URL and one set of app credentials."""

    # Pooled by the factory; outlives the turn that stored it.
    release_with_turn = False

    def __init__(
        self,
        service_url: str,
        credentials: AppCredentials,
        *,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.service_url = service_url
        self.credentials = credentials
        self._http = http_client
        self.conversations = Conversations(self)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers = {"User-Agent": USER_AGENT}
        token = await self.credentials.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        response = await self._http.request(method, f"{self.service_url}{path}", json=json, params=params, headers=headers)
        if response.status_code >= 400:
            detail = response.text
            try:
                detail = response.json().get("error", {}).get("message", detail)
            except (ValueError, AttributeError):
                pass
            raise ConnectorError(
                f"Connector {method} {path} failed ({response.status_code}): {detail}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("connector.non_json_response method={} path={}", method, path)
            return None

    @property
    def is_closed(self) -> bool:
        return self._http.is_closed

    async def release(self) -> None:
        await self._http.aclose()


class ConnectorClientFactory(Protocol):
    async def get_client(self, service_url: str | None, credentials: AppCredentials) -> RestConnectorClient: ...

    def forget_app(self, app_id: str) -> None: ...

    async def aclose(self) -> None: ...


class PooledConnectorClientFactory:
    """Create and pool connector clients per (service URL, app id).

    At most `max_clients` clients are kept; the least recently used one is
    closed when a new client pushes the pool past that size. Clients of an
    app id passed to `forget_app` are closed on the next pool access.
    """

    def __init__(
        self,
        *,
        retry_attempts: int = 0,
        timeout_seconds: float = 30.0,
        max_clients: int = 256,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_clients < 1:
            raise ValueError("max_clients must be at least 1")
        self.retry_attempts = retry_attempts
        self.timeout_seconds = timeout_seconds
        self.max_clients = max_clients
        self._transport = transport
        self._clients: OrderedDict[tuple[str, str], RestConnectorClient] = OrderedDict()
        self._retired: list[RestConnectorClient] = []

    def __len__(self) -> int:
        return len(self._clients)

    async def get_client(self, service_url: str | None, credentials: AppCredentials) -> RestConnectorClient:
        normalized = validate_service_url(service_url)
        await self._close_retired()
        key = (normalized, credentials.app_id or "")
        client = self._clients.get(key)
        if client is not None:
            self._clients.move_to_end(key)
            # Same app id; keep the most recently minted credentials.
            client.credentials = credentials
            return client

        transport = self._transport or httpx.AsyncHTTPTransport(retries=self.retry_attempts)
        http_client = httpx.AsyncClient(transport=transport, timeout=self.timeout_seconds)
        client = RestConnectorClient(normalized, credentials, http_client=http_client)
        self._clients[key] = client
        logger.debug("connector.client_created service_url={} app_id={}", normalized, credentials.app_id or "<anonymous>")
        while len(self._clients) > self.max_clients:
            (evicted_url, evicted_app_id), evicted = self._clients.popitem(last=False)
            logger.debug("connector.client_evicted service_url={} app_id={}", evicted_url, evicted_app_id or "<anonymous>")
            self._retired.append(evicted)
        await self._close_retired()
        return client

    def forget_app(self, app_id: str) -> None:
        """Retire every pooled client that holds credentials for `app_id`."""
        for key in [key for key in self._clients if key[1] == app_id]:
            self._retired.append(self._clients.pop(key))
            logger.debug("connector.client_evicted service_url={} app_id={}", key[0], app_id)

    async def aclose(self) -> None:
        clients = [*self._clients.values(), *self._retired]
        self._clients.clear()
        self._retired.clear()
        for client in clients:
            await client.release()

    async def _close_retired(self) -> None:
        retired, self._retired = self._retired, []
        for client in retired:
            try:
                await client.release()
            except Exception:
                logger.opt(exception=True).warning("connector.client_close_failed service_url={}", client.service_url)


def _conversation_id(activity: Activity) -> str:
    if activity.conversation is None or not activity.conversation.id:
        raise BotArgumentError("activity.conversation.id")
    return activity.conversation.id


def _q(value: str) -> str:
    return quote(value, safe="")
