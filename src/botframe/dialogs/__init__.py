"""Dialog stack and dialog memory."""

from botframe.dialogs.choices import Choice
from botframe.dialogs.dialog import (
    ComponentDialog,
    Dialog,
    DialogContainer,
    DialogContext,
    DialogInstance,
    DialogSet,
    DialogTurnResult,
    DialogTurnStatus,
)

__all__ = [
    "Choice",
    "ComponentDialog",
    "Dialog",
    "DialogContainer",
    "DialogContext",
    "DialogInstance",
    "DialogSet",
    "DialogTurnResult",
    "DialogTurnStatus",
]
