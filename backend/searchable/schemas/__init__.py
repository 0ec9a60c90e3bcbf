"""Schema package"""
from searchable.schemas.chat import (
    Attachment,
    ChatCompletionRequest,
    ChatContent,
    ChatHistoryRecord,
    ChatKind,
    ChatStatus,
    Turn,
)

__all__ = [
    "Attachment",
    "ChatCompletionRequest",
    "ChatContent",
    "ChatHistoryRecord",
    "ChatKind",
    "ChatStatus",
    "Turn",
]
