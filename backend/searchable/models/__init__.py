"""Model package"""
from searchable.models.base import Base
from searchable.models.chat_history import ChatHistory

__all__ = [
    "Base",
    "ChatHistory",
]
