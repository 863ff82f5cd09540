"""Bot adapter connecting bot logic to the channel connector service."""

from __future__ import annotations

import asyncio
import base64
import uuid
from collections.abc import Sequence
from typing import Any

import pluggy
from loguru import logger

from botframe.auth import (
    AppCredentials,
    AuthenticationConfiguration,
    AuthenticationConstants,
    ChannelProvider,
    ClaimsIdentity,
    CredentialProvider,
    IdentityValidator,
    JwtIdentityValidator,
)
from botframe.bot_adapter import BotAdapter
from botframe.connector import ConnectorClientFactory, PooledConnectorClientFactory, RestConnectorClient
from botframe.credentials import AppCredentialCache
from botframe.errors import (
    BotArgumentError,
    BotFrameError,
    InvalidServiceUrlError,
    InvokeResponseMissingError,
    NotImplementedOperationError,
)
from botframe.middleware import BotCallbackHandler, Middleware, MiddlewareHandler, TenantIdWorkaroundForTeamsMiddleware
from botframe.schema import (
    Activity,
    ActivityTypes,
    ChannelAccount,
    Channels,
    ConversationAccount,
    ConversationParameters,
    ConversationReference,
    ConversationsResult,
    InvokeResponse,
    ResourceResponse,
    RoleTypes,
    TokenExchangeState,
    TokenResponse,
    TokenStatus,
)
from botframe.turn_context import TurnContext, TurnStateKeys


class BotFrameworkAdapter(BotAdapter):
    """Adapter for the Bot Framework connector service.

    Authenticates inbound requests, binds a connector client to each turn,
    runs the middleware pipeline and delivers the bot's outbound activities.
    The Teams tenant-id middleware always runs first.
    """

    def __init__(
        self,
        credential_provider: CredentialProvider,
        *,
        auth_configuration: AuthenticationConfiguration | None = None,
        channel_provider: ChannelProvider | None = None,
        identity_validator: IdentityValidator | None = None,
        credential_cache: AppCredentialCache | None = None,
        connector_factory: ConnectorClientFactory | None = None,
        middleware: Middleware | MiddlewareHandler | Sequence[Middleware | MiddlewareHandler] | None = None,
        plugin_manager: pluggy.PluginManager | None = None,
    ) -> None:
        if credential_provider is None:
            raise BotArgumentError("credential_provider cannot be None")
        super().__init__(plugin_manager=plugin_manager)
        self._credential_provider = credential_provider
        self._auth_configuration = auth_configuration or AuthenticationConfiguration()
        self._channel_provider = channel_provider
        self._identity_validator: IdentityValidator = identity_validator or JwtIdentityValidator()
        self._credential_cache = credential_cache or AppCredentialCache(credential_provider)
        self._connector_factory: ConnectorClientFactory = connector_factory or PooledConnectorClientFactory()
        self._credential_cache.add_eviction_listener(self._connector_factory.forget_app)

        self.use(TenantIdWorkaroundForTeamsMiddleware())
        if middleware is not None:
            stages = middleware if isinstance(middleware, (list, tuple)) else [middleware]
            for stage in stages:
                self.use(stage)
        self.install_plugin_middleware()

    @property
    def credential_cache(self) -> AppCredentialCache:
        return self._credential_cache

    @property
    def connector_factory(self) -> ConnectorClientFactory:
        return self._connector_factory

    async def aclose(self) -> None:
        """Close pooled connector clients."""

        await self._connector_factory.aclose()

    async def process_activity(
        self,
        auth_header: str | None,
        activity: Activity,
        callback: BotCallbackHandler,
    ) -> InvokeResponse | None:
        """Authenticate an inbound request and run its activity through the bot."""

        if activity is None:
            raise BotArgumentError("activity")
        identity = await self._identity_validator.authenticate(
            activity,
            auth_header,
            self._credential_provider,
            self._channel_provider,
            self._auth_configuration,
        )
        return await self.process_activity_with_identity(identity, activity, callback)

    async def process_activity_with_identity(
        self,
        identity: ClaimsIdentity,
        activity: Activity,
        callback: BotCallbackHandler,
    ) -> InvokeResponse | None:
        """Run an already authenticated activity through the bot.

        Returns the invoke response for invoke activities, None otherwise.
        """

        if activity is None:
            raise BotArgumentError("activity")
        if identity is None:
            raise BotArgumentError("identity")

        context = TurnContext(self, activity)
        context.turn_state.add(TurnStateKeys.BOT_IDENTITY, identity)
        try:
            connector_client = await self.create_connector_client(activity.service_url, identity)
            context.turn_state.add(TurnStateKeys.CONNECTOR_CLIENT, connector_client)
            await self.run_pipeline(context, callback)

            # Invoke turns answer with a body and status chosen by the bot.
            if activity.is_type(ActivityTypes.INVOKE):
                invoke_response = context.turn_state.get(TurnStateKeys.INVOKE_RESPONSE)
                if invoke_response is None:
                    error = InvokeResponseMissingError()
                    await self.hook_runtime.notify_error(stage="turn", error=error, activity=activity)
                    raise error
                return _as_invoke_response(invoke_response.value)
            return None
        finally:
            await self.release_turn_state(context)

    async def send_activities(self, context: TurnContext, activities: Sequence[Activity]) -> list[ResourceResponse]:
        if context is None:
            raise BotArgumentError("context")
        if activities is None:
            raise BotArgumentError("activities")
        if len(activities) == 0:
            raise BotArgumentError("Expecting one or more activities, but the array was empty.")

        responses: list[ResourceResponse] = []
        for activity in activities:
            response: ResourceResponse | None = None

            if activity.is_type(ActivityTypes.DELAY):
                delay_ms = int(activity.value or 0)
                await asyncio.sleep(delay_ms / 1000)
            elif activity.is_type(ActivityTypes.INVOKE_RESPONSE):
                context.turn_state.replace(TurnStateKeys.INVOKE_RESPONSE, activity)
            elif activity.is_type(ActivityTypes.TRACE) and activity.channel_id != Channels.EMULATOR:
                logger.debug("adapter.trace_suppressed channel_id={} name={}", activity.channel_id, activity.name)
            elif activity.reply_to_id:
                connector_client = self._connector_client(context)
                response = await connector_client.conversations.reply_to_activity(activity)
            else:
                connector_client = self._connector_client(context)
                response = await connector_client.conversations.send_to_conversation(activity)

            # Some channels return no body, e.g. for typing activities.
            if response is None:
                response = ResourceResponse(id=activity.id or "")
            responses.append(response)
        return responses

    async def update_activity(self, context: TurnContext, activity: Activity) -> ResourceResponse | None:
        if activity is None:
            raise BotArgumentError("activity")
        connector_client = self._connector_client(context)
        return await connector_client.conversations.update_activity(activity)

    async def delete_activity(self, context: TurnContext, reference: ConversationReference) -> None:
        if reference is None or reference.conversation is None or not reference.conversation.id:
            raise BotArgumentError("reference.conversation.id")
        if not reference.activity_id:
            raise BotArgumentError("reference.activity_id")
        connector_client = self._connector_client(context)
        await connector_client.conversations.delete_activity(reference.conversation.id, reference.activity_id)

    async def continue_conversation(
        self,
        bot_app_id: str,
        reference: ConversationReference,
        callback: BotCallbackHandler,
    ) -> None:
        """Re-enter a conversation as `bot_app_id`, e.g. to send a proactive message."""

        if not bot_app_id:
            raise BotArgumentError("bot_app_id")
        if reference is None:
            raise BotArgumentError("reference")
        if callback is None:
            raise BotArgumentError("callback")

        context = TurnContext(self, reference.get_continuation_activity())
        identity = ClaimsIdentity.for_bot(bot_app_id)
        context.turn_state.add(TurnStateKeys.BOT_IDENTITY, identity)
        try:
            connector_client = await self.create_connector_client(reference.service_url, identity)
            context.turn_state.add(TurnStateKeys.CONNECTOR_CLIENT, connector_client)
            await self.run_pipeline(context, callback)
        finally:
            await self.release_turn_state(context)

    async def create_conversation(
        self,
        channel_id: str,
        service_url: str,
        credentials: AppCredentials,
        parameters: ConversationParameters,
        callback: BotCallbackHandler,
        reference: ConversationReference | None = None,
    ) -> None:
        """Start a new conversation and run a `CreateConversation` event turn for it."""

        if credentials is None:
            raise BotArgumentError("credentials")
        if parameters is None:
            raise BotArgumentError("parameters")
        if reference is not None:
            if reference.conversation is None:
                return
            tenant_id = reference.conversation.tenant_id
            if tenant_id:
                # Teams still reads the tenant from channel data.
                parameters = parameters.model_copy(update={"channel_data": {"tenantId": tenant_id}, "tenant_id": tenant_id})

        try:
            connector_client = await self._connector_factory.get_client(service_url, credentials)
        except InvalidServiceUrlError as exc:
            raise InvalidServiceUrlError(service_url, f"Bad serviceUrl: {service_url}") from exc

        created = await connector_client.conversations.create_conversation(parameters)

        event_activity = Activity.create_event_activity("CreateConversation")
        event_activity.channel_id = channel_id
        event_activity.service_url = service_url
        event_activity.id = created.activity_id or str(uuid.uuid4())
        event_activity.conversation = ConversationAccount(id=created.id, tenant_id=parameters.tenant_id)
        event_activity.recipient = parameters.bot

        context = TurnContext(self, event_activity)
        app_id = credentials.app_id or ""
        identity = ClaimsIdentity(
            AuthenticationConstants.ANONYMOUS_AUTH_TYPE,
            {
                AuthenticationConstants.AUDIENCE_CLAIM: app_id,
                AuthenticationConstants.APPID_CLAIM: app_id,
                AuthenticationConstants.SERVICE_URL_CLAIM: service_url,
            },
        )
        context.turn_state.add(TurnStateKeys.BOT_IDENTITY, identity)
        context.turn_state.add(TurnStateKeys.CONNECTOR_CLIENT, connector_client)
        try:
            await self.run_pipeline(context, callback)
        finally:
            await self.release_turn_state(context)

    async def delete_conversation_member(self, context: TurnContext, member_id: str) -> None:
        conversation_id = _require_conversation_id(context, "delete_conversation_member")
        if not member_id:
            raise BotArgumentError("member_id")
        connector_client = self._connector_client(context)
        await connector_client.conversations.delete_conversation_member(conversation_id, member_id)

    async def get_activity_members(self, context: TurnContext, activity_id: str | None = None) -> list[ChannelAccount]:
        """List the members of an activity; defaults to the turn's activity."""

        conversation_id = _require_conversation_id(context, "get_activity_members")
        activity_id = activity_id or context.activity.id
        if not activity_id:
            raise BotArgumentError("activity_id")
        connector_client = self._connector_client(context)
        return await connector_client.conversations.get_activity_members(conversation_id, activity_id)

    async def get_conversation_members(self, context: TurnContext) -> list[ChannelAccount]:
        conversation_id = _require_conversation_id(context, "get_conversation_members")
        connector_client = self._connector_client(context)
        return await connector_client.conversations.get_conversation_members(conversation_id)

    async def get_conversations(
        self,
        service_url: str,
        credentials: AppCredentials,
        continuation_token: str | None = None,
    ) -> ConversationsResult:
        """List conversations the bot has taken part in on `service_url`, one page at a time."""

        if not service_url:
            raise BotArgumentError("service_url")
        if credentials is None:
            raise BotArgumentError("credentials")
        connector_client = await self._connector_factory.get_client(service_url, credentials)
        return await connector_client.conversations.get_conversations(continuation_token)

    async def get_conversations_for_turn(
        self,
        context: TurnContext,
        continuation_token: str | None = None,
    ) -> ConversationsResult:
        connector_client = self._connector_client(context)
        return await connector_client.conversations.get_conversations(continuation_token)

    async def get_user_token(
        self,
        context: TurnContext,
        connection_name: str,
        magic_code: str | None = None,
    ) -> TokenResponse | None:
        if context is None:
            raise BotArgumentError("context")
        sender = context.activity.from_property
        if sender is None or not sender.id:
            raise BotArgumentError("BotFrameworkAdapter.get_user_token(): missing from or from.id")
        if not connection_name:
            raise BotArgumentError("connection_name")
        raise NotImplementedOperationError("get_user_token")

    async def get_oauth_sign_in_link(
        self,
        context: TurnContext,
        connection_name: str,
        user_id: str | None = None,
    ) -> str:
        if context is None:
            raise BotArgumentError("context")
        if not connection_name:
            raise BotArgumentError("connection_name")

        if user_id is None:
            activity = context.activity
            reference = ConversationReference(
                activity_id=activity.id,
                bot=activity.recipient,
                channel_id=activity.channel_id,
                conversation=activity.conversation,
                service_url=activity.service_url,
                user=activity.from_property,
            )
        elif not user_id:
            raise BotArgumentError("user_id")
        else:
            reference = ConversationReference(
                bot=ChannelAccount(role=RoleTypes.BOT.value),
                channel_id=Channels.DIRECTLINE,
                conversation=ConversationAccount(),
                user=ChannelAccount(role=RoleTypes.USER.value, id=user_id),
            )
        state = encode_token_exchange_state(TokenExchangeState(connection_name=connection_name, conversation=reference))
        logger.debug("adapter.oauth_state_encoded connection={} length={}", connection_name, len(state))
        raise NotImplementedOperationError("get_oauth_sign_in_link")

    async def sign_out_user(self, context: TurnContext, connection_name: str) -> None:
        if context is None:
            raise BotArgumentError("context")
        if not connection_name:
            raise BotArgumentError("connection_name")
        raise NotImplementedOperationError("sign_out_user")

    async def get_token_status(self, context: TurnContext, user_id: str) -> list[TokenStatus]:
        raise NotImplementedOperationError("get_token_status")

    async def get_aad_tokens(
        self,
        context: TurnContext,
        connection_name: str,
        resource_urls: Sequence[str],
    ) -> dict[str, TokenResponse]:
        raise NotImplementedOperationError("get_aad_tokens")

    async def create_connector_client(self, service_url: str | None, identity: ClaimsIdentity) -> RestConnectorClient:
        """Resolve the connector client for a turn from the caller's identity.

        Channel requests carry the bot app id in the audience claim, emulator
        requests in the appid claim. Identities without claims get an
        anonymous client.
        """

        if identity is None:
            raise BotArgumentError(
                "ClaimsIdentity cannot be None. Pass an anonymous ClaimsIdentity if authentication is turned off."
            )
        claims = identity.claims
        if not claims:
            return await self._connector_factory.get_client(service_url, AppCredentials.empty())

        if AuthenticationConstants.AUDIENCE_CLAIM in claims:
            app_id = claims[AuthenticationConstants.AUDIENCE_CLAIM]
        else:
            app_id = claims.get(AuthenticationConstants.APPID_CLAIM)
        credentials = await self._credential_cache.get_app_credentials(app_id)
        return await self._connector_factory.get_client(service_url, credentials)

    @staticmethod
    def _connector_client(context: TurnContext) -> RestConnectorClient:
        if context is None:
            raise BotArgumentError("context")
        connector_client = context.turn_state.get(TurnStateKeys.CONNECTOR_CLIENT)
        if connector_client is None:
            raise BotFrameError("A ConnectorClient is required in turn state for this operation.")
        return connector_client


def encode_token_exchange_state(state: TokenExchangeState) -> str:
    """Serialize the OAuth token exchange state as base64 JSON."""

    serialized = state.model_dump_json(by_alias=True, exclude_none=True)
    return base64.b64encode(serialized.encode("utf-8")).decode("ascii")


def _require_conversation_id(context: TurnContext, operation: str) -> str:
    if context is None:
        raise BotArgumentError("context")
    conversation = context.activity.conversation
    if conversation is None:
        raise BotArgumentError(f"BotFrameworkAdapter.{operation}(): missing conversation")
    if not conversation.id:
        raise BotArgumentError(f"BotFrameworkAdapter.{operation}(): missing conversation.id")
    return conversation.id


def _as_invoke_response(value: Any) -> InvokeResponse:
    if isinstance(value, InvokeResponse):
        return value
    if value is None:
        return InvokeResponse()
    return InvokeResponse.model_validate(value)
