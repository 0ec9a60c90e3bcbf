"""Chat history CRUD operations

Review note:
- `update` is a full overwrite of messages/title/metadata, never an append.
- Soft-deleted rows stay in the table but are invisible to `get` and `get_by_user`.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Any, Dict, List, Optional, Sequence
import json
import uuid

from searchable.models.chat_history import ChatHistory, utcnow
from searchable.schemas.chat import Turn


def serialize_content(messages: Sequence[Turn]) -> str:
    """Build the JSON document stored in chat_history.content."""
    dumped = [m.model_dump(exclude_none=True) for m in messages]
    return json.dumps(
        {
            "messages": dumped,
            "lastMessage": messages[-1].content if messages else "",
        },
        ensure_ascii=False,
    )


def serialize_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if metadata is None:
        return None
    return json.dumps(metadata, ensure_ascii=False)


class CRUDChatHistory:
    """Chat history CRUD"""

    async def get(
        self,
        db: AsyncSession,
        chat_id: str,
        include_deleted: bool = False,
    ) -> Optional[ChatHistory]:
        """Get a single chat"""
        query = select(ChatHistory).where(ChatHistory.id == chat_id)
        if not include_deleted:
            query = query.where(ChatHistory.deleted_at.is_(None))
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_user(
        self,
        db: AsyncSession,
        user_id: str,
        chat_type: Optional[str] = None,
    ) -> List[ChatHistory]:
        """Get a user's chats, newest first"""
        query = (
            select(ChatHistory)
            .where(ChatHistory.user_id == user_id, ChatHistory.deleted_at.is_(None))
            .order_by(ChatHistory.updated_at.desc())
        )
        if chat_type:
            query = query.where(ChatHistory.type == chat_type)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        chat_type: str,
        messages: Sequence[Turn],
        title: str,
        thread_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatHistory:
        """Create a chat"""
        db_obj = ChatHistory(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=chat_type,
            title=title,
            content=serialize_content(messages),
            thread_id=thread_id,
            meta=serialize_metadata(metadata),
            bookmarked=bool((metadata or {}).get("bookmarked", False)),
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        chat_id: str,
        user_id: str,
        chat_type: str,
        messages: Sequence[Turn],
        title: str,
        thread_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ChatHistory]:
        """Overwrite a chat"""
        db_obj = await self.get(db, chat_id)
        if not db_obj:
            return None

        db_obj.user_id = user_id
        db_obj.type = chat_type
        db_obj.title = title
        db_obj.content = serialize_content(messages)
        db_obj.meta = serialize_metadata(metadata)
        if thread_id:
            db_obj.thread_id = thread_id
        if metadata is not None and "bookmarked" in metadata:
            db_obj.bookmarked = bool(metadata["bookmarked"])

        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def set_title(self, db: AsyncSession, chat_id: str, title: str) -> Optional[ChatHistory]:
        """Rename a chat"""
        db_obj = await self.get(db, chat_id)
        if not db_obj:
            return None
        db_obj.title = title
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def set_bookmark(self, db: AsyncSession, chat_id: str, bookmarked: bool) -> Optional[ChatHistory]:
        """Set the bookmark flag, kept in sync with metadata.bookmarked"""
        db_obj = await self.get(db, chat_id)
        if not db_obj:
            return None
        db_obj.bookmarked = bookmarked
        meta = {}
        if db_obj.meta:
            try:
                meta = json.loads(db_obj.meta)
            except json.JSONDecodeError:
                meta = {}
        if not isinstance(meta, dict):
            meta = {}
        meta["bookmarked"] = bookmarked
        db_obj.meta = serialize_metadata(meta)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def soft_delete(self, db: AsyncSession, chat_id: str) -> bool:
        """Mark a chat as deleted"""
        db_obj = await self.get(db, chat_id)
        if not db_obj:
            return False
        db_obj.deleted_at = utcnow()
        await db.commit()
        return True


chat_history_crud = CRUDChatHistory()
