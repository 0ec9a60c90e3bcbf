from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from searchable.database import init_db
from searchable.schemas.chat import Turn
from searchable.services.chat.events import ChatEventBus
from searchable.services.chat.persistence import ChatHistoryReconciler
from searchable.services.chat.session import ChatSession
from searchable.services.chat.transport import StreamingTransport

COMPLETION_URL = "http://searchable.test/api/v1/ai-services/chat"


class ChunkStream(httpx.AsyncByteStream):
    """Response body that yields fixed chunks, optionally pausing or failing."""

    def __init__(
        self,
        chunks: Sequence[bytes],
        hold_after: Optional[int] = None,
        release: Optional[asyncio.Event] = None,
        fail_after: Optional[int] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.hold_after = hold_after
        self.release = release
        self.fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise httpx.ReadError("connection dropped")
            if self.hold_after is not None and index == self.hold_after and self.release is not None:
                await self.release.wait()
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def make_transport(
    chunks: Sequence[bytes] = (),
    status_code: int = 200,
    json_body: Optional[Dict[str, Any]] = None,
    stream: Optional[ChunkStream] = None,
    requests: Optional[List[httpx.Request]] = None,
) -> StreamingTransport:
    async def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if json_body is not None:
            return httpx.Response(status_code, json=json_body)
        return httpx.Response(status_code, stream=stream or ChunkStream(chunks))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StreamingTransport(url=COMPLETION_URL, client=client)


def run_with_db(test: Callable[[async_sessionmaker[AsyncSession]], Awaitable[None]]) -> None:
    """Run `test` against a fresh in-memory chat history database."""

    async def runner() -> None:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        await init_db(engine)
        try:
            await test(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
        finally:
            await engine.dispose()

    asyncio.run(runner())


class RecordingReconciler(ChatHistoryReconciler):
    """Reconciler double that records upserts instead of touching a database."""

    def __init__(self, new_id: str = "chat-1", fail: bool = False) -> None:
        self.new_id = new_id
        self.fail = fail
        self.upserts: List[Dict[str, Any]] = []
        self.renamed: List[str] = []
        self.bookmarks: List[bool] = []
        self.deleted: List[str] = []

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
        await asyncio.sleep(0)
        self.upserts.append(
            {
                "owner_id": owner_id,
                "kind": kind,
                "turns": list(turns),
                "title": title,
                "existing_id": existing_id,
            }
        )
        if self.fail:
            return None
        return existing_id or self.new_id

    async def rename(self, chat_id: str, title: str) -> bool:
        self.renamed.append(title)
        return not self.fail

    async def set_bookmark(self, chat_id: str, bookmarked: bool) -> bool:
        self.bookmarks.append(bookmarked)
        return not self.fail

    async def soft_delete(self, chat_id: str) -> bool:
        self.deleted.append(chat_id)
        return not self.fail


def make_session(
    transport: StreamingTransport,
    reconciler: ChatHistoryReconciler,
    events: Optional[ChatEventBus] = None,
    user_id: str = "user-1",
    chat_id: Optional[str] = None,
    turns: Iterable[Turn] = (),
    title: str = "",
) -> ChatSession:
    session = ChatSession(transport, reconciler, events or ChatEventBus())
    session.initialize(chat_id, list(turns), title, user_id, "Test User")
    return session


def assistant_texts(states) -> List[str]:
    texts = []
    for state in states:
        if state.turns and state.turns[-1].role == "assistant":
            text = state.turns[-1].content
            if not texts or texts[-1] != text:
                texts.append(text)
    return texts
