"""botframe - Bot Framework channel adapter."""

from botframe.adapter import BotFrameworkAdapter
from botframe.bot_adapter import BotAdapter
from botframe.credentials import AppCredentialCache
from botframe.hookspecs import hookimpl
from botframe.middleware import Middleware, MiddlewareSet
from botframe.schema import Activity, ActivityTypes, ConversationReference, InvokeResponse, ResourceResponse
from botframe.turn_context import TurnContext
from botframe.turn_state import TurnStateCollection

__version__ = "0.1.0"

__all__ = [
    "Activity",
    "ActivityTypes",
    "AppCredentialCache",
    "BotAdapter",
    "BotFrameworkAdapter",
    "ConversationReference",
    "InvokeResponse",
    "Middleware",
    "MiddlewareSet",
    "ResourceResponse",
    "TurnContext",
    "TurnStateCollection",
    "hookimpl",
]
