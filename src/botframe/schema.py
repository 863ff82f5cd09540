"""Activity protocol models exchanged with the connector service."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ActivityTypes(StrEnum):
    MESSAGE = "message"
    CONTACT_RELATION_UPDATE = "contactRelationUpdate"
    CONVERSATION_UPDATE = "conversationUpdate"
    TYPING = "typing"
    END_OF_CONVERSATION = "endOfConversation"
    EVENT = "event"
    INVOKE = "invoke"
    INVOKE_RESPONSE = "invokeResponse"
    DELETE_USER_DATA = "deleteUserData"
    MESSAGE_UPDATE = "messageUpdate"
    MESSAGE_DELETE = "messageDelete"
    INSTALLATION_UPDATE = "installationUpdate"
    MESSAGE_REACTION = "messageReaction"
    SUGGESTION = "suggestion"
    TRACE = "trace"
    HANDOFF = "handoff"
    # Not part of the channel protocol; handled inside the adapter.
    DELAY = "delay"


class RoleTypes(StrEnum):
    USER = "user"
    BOT = "bot"


class Channels:
    """Well-known channel ids."""

    CONSOLE = "console"
    CORTANA = "cortana"
    DIRECTLINE = "directline"
    EMAIL = "email"
    EMULATOR = "emulator"
    FACEBOOK = "facebook"
    GROUPME = "groupme"
    KIK = "kik"
    LINE = "line"
    MSTEAMS = "msteams"
    SKYPE = "skype"
    SKYPEFORBUSINESS = "skypeforbusiness"
    SLACK = "slack"
    SMS = "sms"
    TELEGRAM = "telegram"
    TEST = "test"
    WEBCHAT = "webchat"


class SchemaModel(BaseModel):
    """Base model using the camelCase wire names of the connector service."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ChannelAccount(SchemaModel):
    id: str | None = None
    name: str | None = None
    aad_object_id: str | None = None
    role: str | None = None


class ConversationAccount(SchemaModel):
    id: str | None = None
    name: str | None = None
    is_group: bool | None = None
    conversation_type: str | None = None
    tenant_id: str | None = None
    aad_object_id: str | None = None
    role: str | None = None


class ConversationReference(SchemaModel):
    """Routing coordinates needed to resume a conversation later."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow", frozen=True)

    activity_id: str | None = None
    user: ChannelAccount | None = None
    bot: ChannelAccount | None = None
    conversation: ConversationAccount | None = None
    channel_id: str | None = None
    service_url: str | None = None

    def get_continuation_activity(self) -> Activity:
        """Build the event activity used to re-enter this conversation proactively."""

        return Activity(
            type=ActivityTypes.EVENT,
            name="ContinueConversation",
            id=str(uuid.uuid4()),
            channel_id=self.channel_id,
            service_url=self.service_url,
            conversation=_copy(self.conversation),
            recipient=_copy(self.bot),
            from_property=_copy(self.user),
            relates_to=self,
        )


class CardAction(SchemaModel):
    type: str | None = None
    title: str | None = None
    image: str | None = None
    text: str | None = None
    display_text: str | None = None
    value: Any = None


class Attachment(SchemaModel):
    content_type: str | None = None
    content_url: str | None = None
    content: Any = None
    name: str | None = None
    thumbnail_url: str | None = None


class Activity(SchemaModel):
    """Message or event envelope exchanged between bot and channel."""

    type: str | None = None
    id: str | None = None
    timestamp: datetime | None = None
    local_timestamp: datetime | None = None
    service_url: str | None = None
    channel_id: str | None = None
    from_property: ChannelAccount | None = Field(default=None, alias="from")
    conversation: ConversationAccount | None = None
    recipient: ChannelAccount | None = None
    text_format: str | None = None
    locale: str | None = None
    text: str | None = None
    speak: str | None = None
    input_hint: str | None = None
    summary: str | None = None
    attachments: list[Attachment] | None = None
    entities: list[dict[str, Any]] | None = None
    channel_data: Any = None
    action: str | None = None
    reply_to_id: str | None = None
    label: str | None = None
    value_type: str | None = None
    value: Any = None
    name: str | None = None
    relates_to: ConversationReference | None = None
    code: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _plain_type(cls, value: Any) -> Any:
        if isinstance(value, StrEnum):
            return value.value
        return value

    def is_type(self, activity_type: str) -> bool:
        """Match the activity type, ignoring case and any `/subtype` suffix."""

        if not self.type:
            return False
        head = self.type.split("/", 1)[0]
        return head.casefold() == str(activity_type).casefold()

    def get_conversation_reference(self) -> ConversationReference:
        return ConversationReference(
            activity_id=self.id,
            user=_copy(self.from_property),
            bot=_copy(self.recipient),
            conversation=_copy(self.conversation),
            channel_id=self.channel_id,
            service_url=self.service_url,
        )

    def apply_conversation_reference(self, reference: ConversationReference, is_incoming: bool = False) -> Activity:
        """Fill routing fields from a reference; outgoing activities reply to its activity."""

        self.channel_id = reference.channel_id
        self.service_url = reference.service_url
        self.conversation = _copy(reference.conversation)
        if is_incoming:
            self.from_property = _copy(reference.user)
            self.recipient = _copy(reference.bot)
            if reference.activity_id is not None:
                self.id = reference.activity_id
        else:
            self.from_property = _copy(reference.bot)
            self.recipient = _copy(reference.user)
            if reference.activity_id is not None:
                self.reply_to_id = reference.activity_id
        return self

    def create_reply(self, text: str | None = None, locale: str | None = None) -> Activity:
        return Activity(
            type=ActivityTypes.MESSAGE,
            timestamp=datetime.now(UTC),
            from_property=_account(self.recipient),
            recipient=_account(self.from_property),
            reply_to_id=self.id,
            service_url=self.service_url,
            channel_id=self.channel_id,
            conversation=_copy(self.conversation),
            text=text or "",
            locale=locale or self.locale,
        )

    def create_trace(self, name: str, value: Any = None, value_type: str | None = None, label: str | None = None) -> Activity:
        reply = self.create_reply()
        reply.type = ActivityTypes.TRACE.value
        reply.text = None
        reply.name = name
        reply.label = label
        reply.value_type = value_type or (type(value).__name__ if value is not None else None)
        reply.value = value
        return reply

    @classmethod
    def create_message_activity(cls, text: str | None = None) -> Activity:
        return cls(type=ActivityTypes.MESSAGE, text=text)

    @classmethod
    def create_event_activity(cls, name: str | None = None) -> Activity:
        return cls(type=ActivityTypes.EVENT, name=name)

    @classmethod
    def create_delay_activity(cls, milliseconds: int) -> Activity:
        return cls(type=ActivityTypes.DELAY, value=milliseconds)


class ResourceResponse(SchemaModel):
    id: str | None = None


class InvokeResponse(SchemaModel):
    status: int = 200
    body: Any = None


class ConversationParameters(SchemaModel):
    is_group: bool | None = None
    bot: ChannelAccount | None = None
    members: list[ChannelAccount] | None = None
    topic_name: str | None = None
    activity: Activity | None = None
    channel_data: Any = None
    tenant_id: str | None = None


class ConversationResourceResponse(SchemaModel):
    activity_id: str | None = None
    service_url: str | None = None
    id: str | None = None


class ConversationMembers(SchemaModel):
    id: str | None = None
    members: list[ChannelAccount] = Field(default_factory=list)


class ConversationsResult(SchemaModel):
    continuation_token: str | None = None
    conversations: list[ConversationMembers] = Field(default_factory=list)


class TokenResponse(SchemaModel):
    channel_id: str | None = None
    connection_name: str | None = None
    token: str | None = None
    expiration: str | None = None


class TokenStatus(SchemaModel):
    channel_id: str | None = None
    connection_name: str | None = None
    has_token: bool | None = None
    service_provider_display_name: str | None = None


class TokenExchangeState(SchemaModel):
    connection_name: str | None = None
    conversation: ConversationReference | None = None
    bot_url: str | None = None
    ms_app_id: str | None = None


def _copy[M: BaseModel](model: M | None) -> M | None:
    if model is None:
        return None
    return model.model_copy(deep=True)


def _account(account: ChannelAccount | None) -> ChannelAccount | None:
    if account is None:
        return None
    return ChannelAccount(id=account.id, name=account.name)
