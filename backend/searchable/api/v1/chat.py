"""Completion endpoint (plain text streaming).

Review note:
- The body is raw text deltas, no SSE framing; the client concatenates them.
- Errors before the first byte are JSON `{"error": ...}` with a non-2xx status.
  An upstream failure after that aborts the response, which the client sees as a broken stream.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from typing import AsyncGenerator
import json
import logging

from searchable.schemas.chat import ChatCompletionRequest
from searchable.utils.openai_helper import (
    OpenAINotConfiguredError,
    build_client,
    build_completion_messages,
    iter_text_deltas,
    open_chat_stream,
)

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


async def generate_text_stream(client, stream, model: str) -> AsyncGenerator[bytes, None]:
    """Forward content deltas as UTF-8 bytes, closing the per-request client at the end"""
    chars = 0
    try:
        async for delta in iter_text_deltas(stream):
            chars += len(delta)
            yield delta.encode("utf-8")
    except Exception as e:
        logger.error("chat-stream-upstream-failed model=%s chars=%s error=%s", model, chars, str(e)[:180])
        raise
    finally:
        await client.close()
    logger.info("chat-stream-done model=%s chars=%s", model, chars)


@router.post("/ai-services/chat")
async def chat_completion(request: Request):
    """Stream an assistant reply for the given conversation"""
    try:
        body = await request.json()
        payload = ChatCompletionRequest.model_validate(body)
    except (json.JSONDecodeError, ValidationError, ValueError):
        return JSONResponse({"error": "Missing or invalid messages"}, status_code=400)

    client = None
    try:
        client = build_client()
        messages = build_completion_messages(
            [turn.model_dump(exclude_none=True) for turn in payload.messages]
        )
        stream = await open_chat_stream(client, payload.model, messages)
    except OpenAINotConfiguredError as e:
        logger.error("chat-completion-unavailable reason=%s", str(e))
        return JSONResponse({"error": str(e)}, status_code=500)
    except Exception as e:
        logger.error("chat-completion-failed model=%s error=%s", payload.model, str(e)[:180])
        if client is not None:
            await client.close()
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    return StreamingResponse(
        generate_text_stream(client, stream, payload.model),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # disable nginx buffering
        },
    )
