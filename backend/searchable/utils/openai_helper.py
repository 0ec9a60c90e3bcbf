"""OpenAI helpers"""
from openai import AsyncOpenAI
from typing import AsyncGenerator, Any, Dict, List, Optional
from httpx import Timeout

from searchable.config import settings


class OpenAINotConfiguredError(RuntimeError):
    """Raised when no API key is available."""


def build_client(api_key: Optional[str] = None, base_url: Optional[str] = None) -> AsyncOpenAI:
    """Create an AsyncOpenAI client from settings"""
    key = api_key or settings.OPENAI_API_KEY
    if not key:
        raise OpenAINotConfiguredError("OPENAI_API_KEY is not configured")

    client_kwargs: Dict[str, Any] = {
        "api_key": key,
        "timeout": Timeout(settings.STREAM_CONNECT_TIMEOUT_SEC, read=settings.STREAM_READ_TIMEOUT_SEC),
    }
    # Only pass base_url when one is configured
    if base_url or settings.OPENAI_BASE_URL:
        client_kwargs["base_url"] = base_url or settings.OPENAI_BASE_URL

    return AsyncOpenAI(**client_kwargs)


def build_completion_messages(turns: List[Dict[str, Any]], system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Build the OpenAI message list for a conversation

    Args:
        turns: conversation turns ({role, content, attachments?})
        system_prompt: prompt placed in front of the conversation

    Returns:
        messages in chat completions format; attachments are not forwarded
    """
    messages = [{"role": "system", "content": system_prompt or settings.CHAT_SYSTEM_PROMPT}]
    for turn in turns:
        messages.append({"role": turn["role"], "content": turn["content"]})
    return messages


async def open_chat_stream(
    client: AsyncOpenAI,
    model: str,
    messages: List[Dict[str, str]],
):
    """Start a streaming chat completion; errors raise before any byte is sent"""
    return await client.chat.completions.create(
        model=model,
        messages=messages,
        temperature=settings.CHAT_TEMPERATURE,
        stream=True,
    )


async def iter_text_deltas(stream) -> AsyncGenerator[str, None]:
    """Yield the content deltas of a chat completion stream"""
    async for chunk in stream:
        # Some chunks (usage, role-only) carry no content
        if chunk.choices and len(chunk.choices) > 0:
            delta = chunk.choices[0].delta
            if delta and delta.content:
                yield delta.content
