"""FastAPI application.

Review note:
- The completion endpoint is the only HTTP surface; chat history is reached through
  ChatSession / ChatHistoryReconciler in-process.
- `app.state.chat_events` is the shell-owned ChatEventBus injected into chat sessions.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from searchable.config import settings
from searchable.database import init_db
from searchable.services.chat.events import ChatEventBus
from searchable.services.chat.persistence import ChatHistoryReconciler
from searchable.services.chat.session import ChatSession
from searchable.services.chat.transport import StreamingTransport

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan"""
    logger.info("Starting Searchable backend...")

    os.makedirs("data", exist_ok=True)

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Searchable backend...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Searchable chat backend API",
    lifespan=lifespan,
)
app.state.chat_events = ChatEventBus()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def create_chat_session(user_id: str, user_name: str = "", **kwargs) -> ChatSession:
    """Fresh chat session wired to the shell's event bus"""
    session = ChatSession(
        transport=kwargs.pop("transport", None) or StreamingTransport(),
        reconciler=kwargs.pop("reconciler", None) or ChatHistoryReconciler(),
        events=app.state.chat_events,
        **kwargs,
    )
    session.initialize(None, [], settings.DEFAULT_CHAT_TITLE, user_id, user_name)
    return session


@app.get("/")
async def root():
    """Root"""
    return {
        "message": "Searchable API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


from searchable.api.v1 import chat
app.include_router(chat.router, prefix="/api/v1", tags=["chat"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "searchable.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
