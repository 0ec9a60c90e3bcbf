"""Chat session errors."""

from __future__ import annotations


class ChatTransportError(RuntimeError):
    """Raised when the completion stream fails before or during streaming."""

    def __init__(self, message: str, status_code: int | None = None, partial_text: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.partial_text = partial_text


class ChatHistoryError(LookupError):
    """Base class for chat history lookup failures."""


class ChatNotFoundError(ChatHistoryError):
    """Raised when a chat history record does not exist (or was deleted)."""


class ChatAccessDeniedError(ChatHistoryError):
    """Raised when a chat history record belongs to another user."""
