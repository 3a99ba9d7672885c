"""Shared fixtures for chat-dispatch tests."""

from __future__ import annotations

import json

import pytest

from chat_dispatch.config import load_config
from chat_dispatch.types import (
    Credential,
    DispatchConfig,
    Message,
    ModelCapabilities,
)


class WordCounter:
    """Deterministic token counter: one token per whitespace-separated word."""

    def __init__(self):
        self.calls = 0

    def __call__(self, messages: list[Message]) -> int:
        self.calls += 1
        return sum(len(m.content.split()) for m in messages)


class RecordingChannel:
    """Live channel that records pushed events; can close after N pushes."""

    def __init__(self, close_after: int | None = None):
        self.events: list[bytes] = []
        self.closed = False
        self.close_after = close_after

    def push(self, event: bytes) -> None:
        self.events.append(event)
        if self.close_after is not None and len(self.events) >= self.close_after:
            self.closed = True

    def is_closed(self) -> bool:
        return self.closed

    @property
    def increments(self) -> list[str]:
        """Decoded answer text of every pushed event, in order."""
        texts = []
        for event in self.events:
            for line in event.decode().splitlines():
                if line.startswith("data: "):
                    data = json.loads(line[6:])
                    texts.append(data["choices"][0]["delta"]["content"])
        return texts


class ChunkStream:
    """Async iterator over byte chunks, optionally failing after the last one."""

    def __init__(self, chunks: list[bytes], error: Exception | None = None):
        self._chunks = list(chunks)
        self._error = error
        self.consumed = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self.consumed < len(self._chunks):
            chunk = self._chunks[self.consumed]
            self.consumed += 1
            return chunk
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


class FakeCompletionClient:
    """Completion client returning a canned batch body or stream (no API calls)."""

    def __init__(self, response: dict | None = None, chunks: list[bytes] | None = None,
                 stream_error: Exception | None = None):
        self.response = response or {
            "choices": [{"message": {"content": "Hello"}, "finish_reason": "stop"}],
            "usage": {"total_tokens": 5},
        }
        self.chunks = chunks or []
        self.stream_error = stream_error
        self.calls: list[dict] = []
        self.last_stream: ChunkStream | None = None

    async def invoke(self, payload: dict, *, timeout: float, stream: bool,
                     credential: Credential | None = None, api_format: str | None = None):
        self.calls.append({
            "payload": payload,
            "timeout": timeout,
            "stream": stream,
            "credential": credential,
            "api_format": api_format,
        })
        if stream:
            self.last_stream = ChunkStream(self.chunks, self.stream_error)
            return self.last_stream
        return self.response


class FakeModerator:
    def __init__(self, reject: bool = False):
        self.reject = reject
        self.texts: list[str] = []

    async def moderate(self, text: str) -> None:
        from chat_dispatch.types import PolicyError

        self.texts.append(text)
        if self.reject:
            raise PolicyError("Content violates the usage policy")


def openai_delta(text: str | None, finish_reason: str | None = None) -> bytes:
    delta = {} if text is None else {"content": text}
    event = {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}
    return f"data: {json.dumps(event)}\n\n".encode()


DONE = b"data: [DONE]\n\n"


@pytest.fixture
def counter() -> WordCounter:
    return WordCounter()


@pytest.fixture
def caps() -> ModelCapabilities:
    return ModelCapabilities(
        model="gpt-test",
        name="GPT Test",
        context_max_token=1000,
        quote_max_token=10,
        max_temperature=2.0,
        price_per_1k=0.002,
    )


@pytest.fixture
def config() -> DispatchConfig:
    return load_config(config_dict={
        "models": {
            "gpt-test": {
                "name": "GPT Test",
                "context_max_token": 1000,
                "quote_max_token": 10,
                "max_temperature": 2.0,
                "price_per_1k": 0.002,
            },
            "gpt-censored": {
                "context_max_token": 1000,
                "quote_max_token": 10,
                "censor": True,
            },
            "gpt-system": {
                "context_max_token": 1000,
                "default_system": "You are a careful assistant.",
            },
        },
        "quote_template": "{{index}} {{q}}",
    })


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()
