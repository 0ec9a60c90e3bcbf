"""Chat id announcements for independently mounted views (history sidebar, page router)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List
import logging

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class ChatCreated:
    chat_id: str


ChatCreatedListener = Callable[[ChatCreated], None]


class ChatEventBus:
    """In-process publish/subscribe channel owned by the application shell.

    Events are not retained: a listener registered after `announce` never
    sees it and has to hydrate from chat history on its own.
    """

    def __init__(self) -> None:
        self._listeners: List[ChatCreatedListener] = []

    def subscribe(self, listener: ChatCreatedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def announce(self, chat_id: str) -> None:
        event = ChatCreated(chat_id=chat_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("chat-created-listener-failed chat_id=%s", chat_id)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
