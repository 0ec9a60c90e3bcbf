from __future__ import annotations

import asyncio
from types import SimpleNamespace

import httpx
import pytest

from searchable.config import settings
from searchable.main import app, create_chat_session
from searchable.services.chat.transport import StreamingTransport
from tests.fakes import RecordingReconciler


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeOpenAIClient:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_openai(monkeypatch: pytest.MonkeyPatch):
    calls: list[dict] = []

    async def fake_open_chat_stream(client, model, messages):
        calls.append({"model": model, "messages": messages, "client": client})

        async def stream():
            for piece in ["Hel", None, "lo wor", "ld"]:
                yield _chunk(piece)
            yield SimpleNamespace(choices=[])

        return stream()

    monkeypatch.setattr("searchable.api.v1.chat.build_client", FakeOpenAIClient)
    monkeypatch.setattr("searchable.api.v1.chat.open_chat_stream", fake_open_chat_stream)
    return calls


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://searchable.test")


def test_completion_streams_plain_text(fake_openai) -> None:
    async def run() -> None:
        async with _client() as client:
            resp = await client.post(
                "/api/v1/ai-services/chat",
                json={"messages": [{"role": "user", "content": "Hi"}], "model": "gpt-4o-mini"},
            )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text == "Hello world"

    asyncio.run(run())
    assert fake_openai[0]["model"] == "gpt-4o-mini"
    assert fake_openai[0]["messages"][0] == {"role": "system", "content": settings.CHAT_SYSTEM_PROMPT}
    assert fake_openai[0]["messages"][1] == {"role": "user", "content": "Hi"}
    assert fake_openai[0]["client"].closed is True


def test_completion_defaults_model_and_drops_attachments(fake_openai) -> None:
    async def run() -> None:
        async with _client() as client:
            resp = await client.post(
                "/api/v1/ai-services/chat",
                json={
                    "messages": [
                        {
                            "role": "user",
                            "content": "Summarize",
                            "attachments": [{"id": "1", "name": "Notes.docx", "type": "file"}],
                        }
                    ]
                },
            )
        assert resp.status_code == 200

    asyncio.run(run())
    assert fake_openai[0]["model"] == "gpt-4o"
    assert fake_openai[0]["messages"][1] == {"role": "user", "content": "Summarize"}


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"messages": "not a list"},
        {"messages": [{"role": "robot", "content": "x"}]},
    ],
)
def test_completion_rejects_invalid_body(body) -> None:
    async def run() -> None:
        async with _client() as client:
            resp = await client.post("/api/v1/ai-services/chat", json=body)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing or invalid messages"}

    asyncio.run(run())


def test_completion_without_api_key_returns_json_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")

    async def run() -> None:
        async with _client() as client:
            resp = await client.post(
                "/api/v1/ai-services/chat",
                json={"messages": [{"role": "user", "content": "Hi"}]},
            )
        assert resp.status_code == 500
        assert "OPENAI_API_KEY" in resp.json()["error"]

    asyncio.run(run())


def test_completion_upstream_failure_before_streaming(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_open(client, model, messages):
        raise RuntimeError("upstream 503")

    built: list[FakeOpenAIClient] = []

    def build() -> FakeOpenAIClient:
        built.append(FakeOpenAIClient())
        return built[-1]

    monkeypatch.setattr("searchable.api.v1.chat.build_client", build)
    monkeypatch.setattr("searchable.api.v1.chat.open_chat_stream", failing_open)

    async def run() -> None:
        async with _client() as client:
            resp = await client.post(
                "/api/v1/ai-services/chat",
                json={"messages": [{"role": "user", "content": "Hi"}]},
            )
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
        assert built and built[0].closed is True

    asyncio.run(run())


def test_session_against_completion_endpoint(fake_openai) -> None:
    async def run() -> None:
        client = _client()
        transport = StreamingTransport(url="http://searchable.test/api/v1/ai-services/chat", client=client)
        reconciler = RecordingReconciler(new_id="chat-7")
        announced: list[str] = []
        unsubscribe = app.state.chat_events.subscribe(lambda event: announced.append(event.chat_id))
        try:
            session = create_chat_session("user-1", "Test User", transport=transport, reconciler=reconciler)
            await session.submit("Hello")
        finally:
            unsubscribe()
            await client.aclose()

        assert session.turns[-1].content == "Hello world"
        assert session.chat_id == "chat-7"
        assert announced == ["chat-7"]

    asyncio.run(run())


def test_health() -> None:
    async def run() -> None:
        async with _client() as client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == settings.APP_NAME

    asyncio.run(run())
