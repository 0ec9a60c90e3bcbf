"""Chat history model

Review note:
- `content` is a JSON document: {"messages": [...], "lastMessage": "..."}.
- `metadata` is a reserved attribute on declarative classes, so the column is mapped as `meta`.
- Deleting from the UI only stamps `deleted_at`; listing and loading skip those rows.
"""
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, Text
from datetime import datetime, timezone

from searchable.models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChatHistory(Base):
    """Persisted conversation, one row per chat"""
    __tablename__ = "chat_history"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(100), nullable=False, index=True)
    type = Column(String(20), nullable=False, default="normal", index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    thread_id = Column(String(200), nullable=True)
    meta = Column("metadata", Text, nullable=True, default=None)
    bookmarked = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True, default=None)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("type IN ('normal', 'transcription', 'email')", name="check_chat_type"),
    )

    def __repr__(self):
        return f"<ChatHistory {self.title}>"
