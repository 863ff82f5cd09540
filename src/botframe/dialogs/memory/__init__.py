from botframe.dialogs.memory.scopes import (
    BotStateMemoryScope,
    ConversationMemoryScope,
    DialogClassMemoryScope,
    DialogContextMemoryScope,
    MemoryScope,
    ReadOnlyObject,
    ScopePath,
    ThisMemoryScope,
    UserMemoryScope,
)

__all__ = [
    "BotStateMemoryScope",
    "ConversationMemoryScope",
    "DialogClassMemoryScope",
    "DialogContextMemoryScope",
    "MemoryScope",
    "ReadOnlyObject",
    "ScopePath",
    "ThisMemoryScope",
    "UserMemoryScope",
]
