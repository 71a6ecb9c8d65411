from __future__ import annotations

from contextlib import contextmanager
from typing import AsyncIterator, Iterable, Iterator, Optional, Union

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from estate_assistant.main import app
from estate_assistant.routers.chat import get_agents
from estate_assistant.schemas.chat import PromptEnvelope
from estate_assistant.services.chunks import ChunkStream, ResponseChunk
from estate_assistant.services.router import Agents

Step = Union[ResponseChunk, str, Exception]


async def scripted(steps: Iterable[Step], closed: list[bool] | None = None) -> AsyncIterator[ResponseChunk]:
    """Yield chunks (plain strings become text deltas); raise exceptions in place."""
    try:
        for step in steps:
            if isinstance(step, Exception):
                raise step
            if isinstance(step, str):
                step = ResponseChunk(text_delta=step)
            yield step
    finally:
        if closed is not None:
            closed.append(True)


class FakeGenerationClient:
    """Records envelopes and replays a script instead of calling Gemini."""

    def __init__(self, steps: Iterable[Step] = ("ok",), start_error: Exception | None = None) -> None:
        self.steps = list(steps)
        self.start_error = start_error
        self.envelopes: list[PromptEnvelope] = []
        self.labels: list[str] = []
        self.closed: list[bool] = []

    async def generate_stream(self, envelope: PromptEnvelope, label: str = "agent") -> ChunkStream:
        self.envelopes.append(envelope)
        self.labels.append(label)
        if self.start_error is not None:
            raise self.start_error
        return ChunkStream(scripted(self.steps, self.closed), label=label)


@pytest.fixture
def fake_client() -> FakeGenerationClient:
    return FakeGenerationClient(
        steps=["**Issues:** • damp patch\n", "**Suggestions:** • ventilate the room"]
    )


@contextmanager
def serving(fake: Optional[FakeGenerationClient]) -> Iterator[TestClient]:
    """Serve the app with agents built around `fake` (None = unconfigured)."""
    agents = Agents.from_client(fake) if fake is not None else None
    app.dependency_overrides[get_agents] = lambda: agents
    try:
        # Mid-stream failures abort the response; keep the partial body.
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(fake_client: FakeGenerationClient) -> Iterator[TestClient]:
    with serving(fake_client) as test_client:
        yield test_client


def starlette_request(request: httpx.Request) -> Request:
    """Build a starlette Request for /api/chat from an httpx request."""
    body = request.read()
    raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in request.headers.items()]
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/chat",
        "raw_path": b"/api/chat",
        "query_string": b"",
        "headers": raw_headers,
        "client": ("127.0.0.1", 54321),
        "server": ("testserver", 80),
    }

    async def receive() -> dict:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)
