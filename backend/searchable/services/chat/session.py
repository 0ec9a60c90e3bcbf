"""Chat session state.

Review note:
- One ChatSession per mounted chat view; it is the only writer of `turns`.
  Transport and persistence get snapshots and hand results back.
- Submission gate: `status` is checked and flipped to "loading" with no await in between,
  which is enough on a single event loop. Writes to chat history are serialized by
  `_persist_lock` so an older overwrite never lands after a newer one.
- `_generation` changes whenever the session is re-bound (initialize / load / new chat);
  saves started under an older generation are dropped.
- Every submit takes the next `_submit_seq`; a save tagged with a lower sequence than the
  last applied one is skipped, so a cancelled submit cannot overwrite a newer one.
- A session without `user_id` works in memory only; nothing is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
import asyncio
import contextlib
import logging

from searchable.config import settings
from searchable.schemas.chat import Attachment, ChatKind, ChatStatus, Turn
from searchable.services.chat.errors import (
    ChatAccessDeniedError,
    ChatNotFoundError,
    ChatTransportError,
)
from searchable.services.chat.events import ChatEventBus
from searchable.services.chat.persistence import ChatHistoryReconciler, derive_title
from searchable.services.chat.transport import StreamingTransport

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class ChatSnapshot:
    """Read-only view handed to observers after every change."""
    turns: Tuple[Turn, ...]
    status: ChatStatus
    error: Optional[str]
    chat_id: Optional[str]
    chat_title: str
    bookmarked: bool
    selected_model: str
    last_message: str


SnapshotListener = Callable[[ChatSnapshot], None]


class ChatSession:
    """State holder for one conversation."""

    def __init__(
        self,
        transport: StreamingTransport,
        reconciler: ChatHistoryReconciler,
        events: ChatEventBus,
        kind: ChatKind = "normal",
        thread_id: Optional[str] = None,
    ) -> None:
        self.transport = transport
        self.reconciler = reconciler
        self.events = events
        self.kind = kind
        self.thread_id = thread_id

        self.turns: List[Turn] = []
        self.status: ChatStatus = "idle"
        self.error: Optional[str] = None
        self.user_id: str = ""
        self.user_name: str = ""
        self.chat_id: Optional[str] = None
        self.chat_title: str = settings.DEFAULT_CHAT_TITLE
        self.bookmarked: bool = False
        self.selected_model: str = settings.DEFAULT_MODEL
        self.last_message: str = ""

        self._abort: Optional[asyncio.Event] = None
        self._listeners: List[SnapshotListener] = []
        self._pending_save: Optional[asyncio.Task] = None
        self._persist_lock = asyncio.Lock()
        self._generation = 0
        self._submit_seq = 0
        self._applied_seq = 0
        # True once the title no longer follows the first user turn (rename or hydrate).
        self._custom_title = False

    # -- observers -------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(
            turns=tuple(self.turns),
            status=self.status,
            error=self.error,
            chat_id=self.chat_id,
            chat_title=self.chat_title,
            bookmarked=self.bookmarked,
            selected_model=self.selected_model,
            last_message=self.last_message,
        )

    def _notify(self) -> None:
        state = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("chat-session-listener-failed chat_id=%s", self.chat_id)

    # -- lifecycle -------------------------------------------------------

    def _rebind(self) -> None:
        self.cancel()
        self._generation += 1
        self._pending_save = None

    def initialize(
        self,
        chat_id: Optional[str],
        turns: Sequence[Turn],
        title: str,
        user_id: str,
        user_name: str = "",
        bookmarked: bool = False,
    ) -> None:
        """Replace all session fields at once."""
        self._rebind()
        self.chat_id = chat_id
        self.turns = list(turns)
        self.chat_title = title or settings.DEFAULT_CHAT_TITLE
        self._custom_title = self._is_custom_title(self.chat_title, self.turns)
        self.user_id = user_id
        self.user_name = user_name
        self.bookmarked = bookmarked
        self.last_message = ""
        self.status = "idle"
        self.error = None
        self._notify()

    def new_chat(self) -> None:
        """Detach from the current record and clear the conversation in place."""
        self._rebind()
        self.turns.clear()
        self.chat_id = None
        self.chat_title = settings.DEFAULT_CHAT_TITLE
        self._custom_title = False
        self.bookmarked = False
        self.last_message = ""
        self.status = "idle"
        self.error = None
        self._notify()

    def set_model(self, model: str) -> None:
        self.selected_model = model
        self._notify()

    async def load_history(self, chat_id: str) -> bool:
        """Hydrate from chat history, checking that the current user owns it."""
        if not self.user_id:
            logger.warning("chat-load-skipped reason=missing-user chat_id=%s", chat_id)
            return False
        if not chat_id:
            return self._fail("Missing chat ID")

        try:
            record = await self.reconciler.fetch(chat_id, self.user_id)
        except ChatNotFoundError:
            return self._fail("Chat history not found")
        except ChatAccessDeniedError:
            logger.warning("chat-load-denied chat_id=%s user=%s", chat_id, self.user_id)
            return self._fail("You don't have access to this chat")
        except Exception as exc:
            logger.error("chat-load-failed chat_id=%s error=%s", chat_id, str(exc)[:180])
            return self._fail("Failed to load chat history")

        self._rebind()
        self.turns = list(record.content.messages)
        self.chat_title = record.title or settings.DEFAULT_CHAT_TITLE
        self._custom_title = self._is_custom_title(self.chat_title, self.turns)
        self.chat_id = record.id
        self.bookmarked = record.bookmarked
        self.last_message = ""
        self.status = "idle"
        self.error = None
        self._notify()
        return True

    @staticmethod
    def _is_custom_title(title: str, turns: Sequence[Turn]) -> bool:
        return title not in (settings.DEFAULT_CHAT_TITLE, derive_title(turns))

    def _fail(self, message: str) -> bool:
        self.status = "error"
        self.error = message
        self._notify()
        return False

    # -- conversation ----------------------------------------------------

    async def submit(self, text: str, attachments: Optional[Sequence[Attachment]] = None) -> None:
        """Append a user turn, stream the answer and persist the result.

        Never raises: transport failures end in status "error" with the
        partial assistant turn left in place.
        """
        if not text.strip() or self.status == "loading":
            return

        # Gate closes before the first await.
        self.status = "loading"
        self.error = None
        abort = asyncio.Event()
        self._abort = abort
        generation = self._generation
        self._submit_seq += 1
        seq = self._submit_seq

        user_turn = Turn(role="user", content=text, attachments=list(attachments) if attachments else None)
        self.turns = [*self.turns, user_turn]
        history = list(self.turns)
        self._notify()

        if self.user_id and not self.chat_id:
            await self._save(history, generation, seq)
            if not self.chat_id:
                logger.error("chat-create-failed user=%s", self.user_id)
        elif self.user_id:
            self._pending_save = asyncio.ensure_future(self._save(history, generation, seq))
        else:
            logger.warning("chat-persist-skipped reason=missing-user")

        def on_chunk(accumulated: str) -> None:
            if abort.is_set():
                return
            self.turns = [*history, Turn(role="assistant", content=accumulated)]
            self._notify()

        final_text = ""
        try:
            if not abort.is_set():
                final_text = await self.transport.stream(
                    {
                        "messages": [t.model_dump(exclude_none=True) for t in history],
                        "model": self.selected_model,
                    },
                    on_chunk,
                    abort,
                )
        except ChatTransportError as exc:
            logger.warning("chat-stream-failed status=%s error=%s", exc.status_code, exc.message[:180])
            final_text = exc.partial_text
            if self._abort is abort:
                self.status = "error"
                self.error = exc.message
        except Exception as exc:
            logger.error("chat-stream-failed error=%s", str(exc)[:180])
            if self._abort is abort:
                self.status = "error"
                self.error = str(exc) or "Unknown error"
        else:
            if self._abort is abort:
                self.last_message = final_text
        finally:
            if self._abort is abort:
                self._abort = None
                if self.status == "loading":
                    self.status = "idle"
            self._notify()

        if self.user_id and final_text:
            await self._save([*history, Turn(role="assistant", content=final_text)], generation, seq)

    def cancel(self) -> None:
        """Abort the outstanding stream; turns received so far are kept."""
        abort = self._abort
        if abort is None:
            return
        abort.set()
        self._abort = None
        self.status = "idle"
        self._notify()

    async def _save(self, turns: Sequence[Turn], generation: int, seq: int) -> Optional[str]:
        pending = self._pending_save
        if pending is not None and pending is not asyncio.current_task():
            self._pending_save = None
            with contextlib.suppress(Exception):
                await pending

        async with self._persist_lock:
            if generation != self._generation:
                logger.info("chat-save-dropped reason=session-rebound")
                return None
            if seq < self._applied_seq:
                logger.info("chat-save-dropped reason=superseded seq=%s applied=%s", seq, self._applied_seq)
                return None

            title = self.chat_title if self._custom_title else derive_title(turns)
            saved_id = await self.reconciler.upsert(
                self.user_id,
                self.kind,
                turns,
                title,
                thread_id=self.thread_id,
                metadata={"bookmarked": self.bookmarked},
                existing_id=self.chat_id,
            )
            if saved_id:
                self._applied_seq = seq
            if generation != self._generation:
                return saved_id

            self.chat_title = title
            if saved_id and not self.chat_id:
                self.chat_id = saved_id
                self.events.announce(saved_id)
            self._notify()
            return saved_id

    # -- record metadata -------------------------------------------------

    async def toggle_bookmark(self) -> bool:
        if not self.chat_id or not self.user_id:
            return False
        target = not self.bookmarked
        if not await self.reconciler.set_bookmark(self.chat_id, target):
            return False
        self.bookmarked = target
        self._notify()
        return True

    async def rename(self, title: str) -> bool:
        if not self.chat_id or not self.user_id or not title.strip():
            return False
        if not await self.reconciler.rename(self.chat_id, title):
            return False
        self.chat_title = title
        self._custom_title = True
        self._notify()
        return True

    async def delete(self) -> bool:
        """Soft-delete the record and detach; the next submit starts a new chat."""
        if not self.chat_id or not self.user_id:
            return False
        if not await self.reconciler.soft_delete(self.chat_id):
            return False
        self.new_chat()
        return True
