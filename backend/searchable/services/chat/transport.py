"""Streaming client for the completion endpoint.

Review note:
- The endpoint answers with raw text deltas (no SSE framing), concatenation is the final text.
- Bytes go through one incremental UTF-8 decoder per request, so a character split across
  two network chunks is emitted once the second chunk arrives.
- Abort policy: setting the signal stops the read loop, closes the response and the call
  returns the text accumulated so far. It never raises because of an abort.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional
import asyncio
import codecs
import contextlib
import json
import logging

import httpx

from searchable.config import settings
from searchable.services.chat.errors import ChatTransportError

logger = logging.getLogger("uvicorn.error")

ChunkSink = Callable[[str], None]


def _error_message(status_code: int, body: bytes) -> str:
    """Extract `{"error": ...}` from a failed response, falling back to the raw body."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text) if text else {}
    except json.JSONDecodeError:
        data = {}
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return text[:300] or f"Error communicating with chat API ({status_code})"


class StreamingTransport:
    """One cancellable POST per call, body read incrementally."""

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout_sec: Optional[float] = None,
        read_timeout_sec: Optional[float] = None,
    ) -> None:
        self.url = url or settings.COMPLETION_URL
        connect = connect_timeout_sec if connect_timeout_sec is not None else settings.STREAM_CONNECT_TIMEOUT_SEC
        read = read_timeout_sec if read_timeout_sec is not None else settings.STREAM_READ_TIMEOUT_SEC
        self._timeout = httpx.Timeout(connect, read=read)
        self._client = client
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def stream(
        self,
        payload: Dict[str, Any],
        on_chunk: ChunkSink,
        signal: asyncio.Event,
    ) -> str:
        """POST `payload` and feed the growing text to `on_chunk`.

        `on_chunk` runs once per read that adds decoded text; a read holding only
        the first bytes of a multi-byte character is carried to the next one.

        Returns the full text, or the partial text if `signal` was set.
        Raises ChatTransportError on a non-2xx answer or a broken stream.
        """
        accumulated = ""

        async def pump() -> None:
            nonlocal accumulated
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            client = self._get_client()
            try:
                async with client.stream("POST", self.url, json=payload, timeout=self._timeout) as resp:
                    if resp.status_code < 200 or resp.status_code >= 300:
                        body = await resp.aread()
                        raise ChatTransportError(
                            _error_message(resp.status_code, body),
                            status_code=resp.status_code,
                        )

                    async for raw in resp.aiter_bytes():
                        if signal.is_set():
                            return
                        text = decoder.decode(raw)
                        if not text:
                            continue
                        accumulated += text
                        on_chunk(accumulated)

                    tail = decoder.decode(b"", final=True)
                    if tail and not signal.is_set():
                        accumulated += tail
                        on_chunk(accumulated)
            except httpx.TimeoutException as exc:
                raise ChatTransportError(
                    f"Chat API timed out: {exc.__class__.__name__}",
                    partial_text=accumulated,
                ) from exc
            except httpx.HTTPError as exc:
                raise ChatTransportError(
                    f"Chat API connection failed: {exc}",
                    partial_text=accumulated,
                ) from exc

        if signal.is_set():
            return accumulated

        pump_task = asyncio.ensure_future(pump())
        abort_task = asyncio.ensure_future(signal.wait())
        try:
            await asyncio.wait({pump_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            pump_task.cancel()
            raise
        finally:
            if not abort_task.done():
                abort_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await abort_task

        if not pump_task.done():
            # Aborted while waiting on the network; cancelling closes the response.
            pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump_task
            logger.info("chat-stream-aborted chars=%s", len(accumulated))
            return accumulated

        exc = pump_task.exception()
        if exc is not None:
            if signal.is_set():
                logger.info("chat-stream-aborted chars=%s", len(accumulated))
                return accumulated
            raise exc
        return accumulated
