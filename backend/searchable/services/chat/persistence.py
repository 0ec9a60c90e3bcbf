"""Chat history persistence for the chat session.

Review note:
- `upsert` is create-or-overwrite keyed by an optional existing id and never raises:
  None means "not persisted", the in-memory conversation stays valid.
- Every write runs under PERSIST_TIMEOUT_SEC; a timeout counts as a failed write.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from searchable.config import settings
from searchable.crud.chat_history import chat_history_crud
from searchable.database import async_session_maker
from searchable.schemas.chat import ChatHistoryRecord, Turn
from searchable.services.chat.errors import ChatAccessDeniedError, ChatNotFoundError

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

TITLE_WORDS = 5


def derive_title(turns: Sequence[Turn], fallback: Optional[str] = None) -> str:
    """First five words of the first user turn plus an ellipsis."""
    first_user = next((t for t in turns if t.role == "user"), None)
    if first_user is None:
        return fallback or settings.DEFAULT_CHAT_TITLE
    return " ".join(first_user.content.split()[:TITLE_WORDS]) + "..."


def preview(record: ChatHistoryRecord) -> str:
    """Text shown under a chat in the history list."""
    if record.content.lastMessage:
        return record.content.lastMessage
    if record.content.messages:
        return record.content.messages[-1].content
    return ""


class ChatHistoryReconciler:
    """Maps a session's turns onto one chat_history row."""

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        timeout_sec: Optional[float] = None,
    ) -> None:
        self._session_maker = session_maker or async_session_maker
        self.timeout_sec = timeout_sec if timeout_sec is not None else settings.PERSIST_TIMEOUT_SEC

    async def _run(self, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def run_in_session() -> T:
            async with self._session_maker() as db:
                return await op(db)

        return await asyncio.wait_for(run_in_session(), timeout=self.timeout_sec)

    async def upsert(
        self,
        owner_id: str,
        kind: str,
        turns: Sequence[Turn],
        title: Optional[str] = None,
        thread_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        existing_id: Optional[str] = None,
    ) -> Optional[str]:
        """Overwrite `existing_id` or create a new row; returns the id or None."""
        resolved_title = title or derive_title(turns)
        snapshot = list(turns)

        async def op(db: AsyncSession) -> Optional[str]:
            if existing_id:
                row = await chat_history_crud.update(
                    db,
                    existing_id,
                    owner_id,
                    kind,
                    snapshot,
                    resolved_title,
                    thread_id=thread_id,
                    metadata=metadata,
                )
                return row.id if row else None
            row = await chat_history_crud.create(
                db,
                owner_id,
                kind,
                snapshot,
                resolved_title,
                thread_id=thread_id,
                metadata=metadata,
            )
            return row.id

        try:
            chat_id = await self._run(op)
        except asyncio.TimeoutError:
            logger.warning("chat-history-save-timeout existing_id=%s", existing_id)
            return None
        except Exception as exc:
            logger.error("chat-history-save-failed existing_id=%s error=%s", existing_id, str(exc)[:180])
            return None

        if chat_id is None:
            logger.warning("chat-history-save-missing existing_id=%s", existing_id)
            return None
        logger.info(
            "chat-history-saved id=%s created=%s messages=%s",
            chat_id,
            existing_id is None,
            len(snapshot),
        )
        return chat_id

    async def fetch(self, chat_id: str, owner_id: str) -> ChatHistoryRecord:
        """Load a chat for `owner_id`.

        Raises ChatNotFoundError for unknown or deleted ids and
        ChatAccessDeniedError when the row belongs to someone else.
        """
        async def op(db: AsyncSession) -> Optional[ChatHistoryRecord]:
            row = await chat_history_crud.get(db, chat_id)
            return ChatHistoryRecord.model_validate(row) if row else None

        record = await self._run(op)
        if record is None:
            raise ChatNotFoundError(chat_id)
        if record.user_id != owner_id:
            raise ChatAccessDeniedError(chat_id)
        return record

    async def list_for_user(self, owner_id: str, kind: Optional[str] = None) -> List[ChatHistoryRecord]:
        """A user's chats, newest first; empty on failure."""
        async def op(db: AsyncSession) -> List[ChatHistoryRecord]:
            rows = await chat_history_crud.get_by_user(db, owner_id, kind)
            return [ChatHistoryRecord.model_validate(row) for row in rows]

        try:
            return await self._run(op)
        except Exception as exc:
            logger.error("chat-history-list-failed user=%s error=%s", owner_id, str(exc)[:180])
            return []

    async def _apply(self, name: str, chat_id: str, op: Callable[[AsyncSession], Awaitable[Any]]) -> bool:
        try:
            result = await self._run(op)
        except Exception as exc:
            logger.error("chat-history-%s-failed id=%s error=%s", name, chat_id, str(exc)[:180])
            return False
        return bool(result)

    async def rename(self, chat_id: str, title: str) -> bool:
        return await self._apply(
            "rename", chat_id, lambda db: chat_history_crud.set_title(db, chat_id, title)
        )

    async def set_bookmark(self, chat_id: str, bookmarked: bool) -> bool:
        return await self._apply(
            "bookmark", chat_id, lambda db: chat_history_crud.set_bookmark(db, chat_id, bookmarked)
        )

    async def soft_delete(self, chat_id: str) -> bool:
        return await self._apply(
            "delete", chat_id, lambda db: chat_history_crud.soft_delete(db, chat_id)
        )
