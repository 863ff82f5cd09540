"""Context object for one turn of a conversation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from botframe.errors import BotArgumentError
from botframe.schema import Activity, ActivityTypes, ConversationReference, ResourceResponse
from botframe.turn_state import TurnStateCollection

if TYPE_CHECKING:
    from botframe.bot_adapter import BotAdapter


class TurnStateKeys:
    BOT_IDENTITY = "BotIdentity"
    CONNECTOR_CLIENT = "ConnectorClient"
    INVOKE_RESPONSE = "BotFrameworkAdapter.InvokeResponse"


class TurnContext:
    """The inbound activity, its adapter and the turn's state."""

    def __init__(self, adapter: BotAdapter, activity: Activity) -> None:
        if adapter is None:
            raise BotArgumentError("adapter")
        if activity is None:
            raise BotArgumentError("activity")
        self.adapter = adapter
        self.activity = activity
        self.turn_state = TurnStateCollection()
        self._responded = False

    @property
    def responded(self) -> bool:
        """Whether a non-trace activity has been sent during this turn."""
        return self._responded

    async def send_activity(
        self,
        activity_or_text: Activity | str,
        speak: str | None = None,
        input_hint: str | None = None,
    ) -> ResourceResponse | None:
        if isinstance(activity_or_text, str):
            activity = Activity(type=ActivityTypes.MESSAGE, text=activity_or_text, speak=speak, input_hint=input_hint)
        else:
            activity = activity_or_text
        responses = await self.send_activities([activity])
        return responses[0] if responses else None

    async def send_activities(self, activities: Sequence[Activity]) -> list[ResourceResponse]:
        if not activities:
            raise BotArgumentError("activities")

        reference = self.activity.get_conversation_reference()
        outgoing: list[Activity] = []
        for activity in activities:
            prepared = activity.model_copy(deep=True)
            reply_to_id = prepared.reply_to_id
            prepared.apply_conversation_reference(reference)
            if reply_to_id:
                prepared.reply_to_id = reply_to_id
            if not prepared.type:
                prepared.type = ActivityTypes.MESSAGE.value
            outgoing.append(prepared)

        responses = await self.adapter.send_activities(self, outgoing)
        if any(not activity.is_type(ActivityTypes.TRACE) for activity in outgoing):
            self._responded = True
        return responses

    async def update_activity(self, activity: Activity) -> ResourceResponse | None:
        if activity is None:
            raise BotArgumentError("activity")
        prepared = activity.model_copy(deep=True)
        prepared.apply_conversation_reference(self.activity.get_conversation_reference())
        prepared.id = activity.id
        return await self.adapter.update_activity(self, prepared)

    async def delete_activity(self, id_or_reference: str | ConversationReference) -> None:
        if isinstance(id_or_reference, str):
            reference = self.activity.get_conversation_reference().model_copy(update={"activity_id": id_or_reference})
        else:
            reference = id_or_reference
        await self.adapter.delete_activity(self, reference)

    def get_conversation_reference(self) -> ConversationReference:
        return self.activity.get_conversation_reference()
