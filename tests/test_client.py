"""Tests for HTTPCompletionClient against httpx.MockTransport."""

import json

import httpx
import pytest

from chat_dispatch.providers.client import HTTPCompletionClient
from chat_dispatch.types import Credential, UpstreamConfig, UpstreamError

from conftest import DONE, openai_delta


def _recording_transport(handler):
    seen: list[httpx.Request] = []

    def wrapped(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(wrapped), seen


PAYLOAD = {"model": "gpt-test", "messages": [{"role": "user", "content": "Hi"}]}


class TestBatch:
    @pytest.mark.asyncio
    async def test_returns_json_body(self):
        body = {"choices": [{"message": {"content": "Hello"}}], "usage": {"total_tokens": 5}}
        transport, seen = _recording_transport(lambda r: httpx.Response(200, json=body))
        client = HTTPCompletionClient("https://llm.local/v1/", api_key="sk-env", transport=transport)

        result = await client.invoke(PAYLOAD, timeout=30, stream=False)

        assert result == body
        request = seen[0]
        assert str(request.url) == "https://llm.local/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-env"
        assert json.loads(request.content) == PAYLOAD

    @pytest.mark.asyncio
    async def test_credential_overrides_key_and_base_url(self):
        transport, seen = _recording_transport(lambda r: httpx.Response(200, json={}))
        client = HTTPCompletionClient("https://llm.local/v1", api_key="sk-env", transport=transport)

        await client.invoke(
            PAYLOAD, timeout=30, stream=False,
            credential=Credential(api_key="sk-user", base_url="https://mine.example/v1"),
        )

        assert str(seen[0].url) == "https://mine.example/v1/chat/completions"
        assert seen[0].headers["authorization"] == "Bearer sk-user"

    @pytest.mark.asyncio
    async def test_credential_without_base_url_keeps_configured_url(self):
        transport, seen = _recording_transport(lambda r: httpx.Response(200, json={}))
        client = HTTPCompletionClient("https://llm.local/v1", api_key="sk-env", transport=transport)

        await client.invoke(PAYLOAD, timeout=30, stream=False, credential=Credential(api_key="sk-user"))

        assert str(seen[0].url) == "https://llm.local/v1/chat/completions"
        assert seen[0].headers["authorization"] == "Bearer sk-user"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status(self):
        error = {"error": {"message": "Invalid API key", "type": "auth"}}
        transport, _ = _recording_transport(lambda r: httpx.Response(401, json=error))
        client = HTTPCompletionClient(api_key="bad", transport=transport)

        with pytest.raises(UpstreamError, match="HTTP 401: Invalid API key") as exc_info:
            await client.invoke(PAYLOAD, timeout=30, stream=False)

        assert exc_info.value.status_code == 401
        assert exc_info.value.payload == error

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        transport, _ = _recording_transport(lambda r: httpx.Response(502, text="Bad Gateway"))
        client = HTTPCompletionClient(transport=transport)

        with pytest.raises(UpstreamError, match="HTTP 502: Bad Gateway"):
            await client.invoke(PAYLOAD, timeout=30, stream=False)

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        transport, _ = _recording_transport(lambda r: httpx.Response(200, text="<html>"))
        client = HTTPCompletionClient(transport=transport)

        with pytest.raises(UpstreamError, match="Invalid JSON"):
            await client.invoke(PAYLOAD, timeout=30, stream=False)

    @pytest.mark.asyncio
    async def test_connect_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = HTTPCompletionClient(transport=httpx.MockTransport(refuse))

        with pytest.raises(UpstreamError, match="HTTP error"):
            await client.invoke(PAYLOAD, timeout=30, stream=False)

    @pytest.mark.asyncio
    async def test_anthropic_headers_and_path(self):
        transport, seen = _recording_transport(lambda r: httpx.Response(200, json={}))
        client = HTTPCompletionClient(
            "https://api.anthropic.com/v1", api_key="sk-ant", api_format="anthropic",
            transport=transport,
        )

        await client.invoke(PAYLOAD, timeout=30, stream=False)

        request = seen[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert "authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_per_call_format_overrides_configured_one(self):
        transport, seen = _recording_transport(lambda r: httpx.Response(200, json={}))
        client = HTTPCompletionClient(
            "https://gateway.local/v1", api_key="sk-gw", api_format="openai", transport=transport,
        )

        await client.invoke(PAYLOAD, timeout=30, stream=False, api_format="anthropic")
        await client.invoke(PAYLOAD, timeout=30, stream=False)

        anthropic, openai = seen
        assert str(anthropic.url) == "https://gateway.local/v1/messages"
        assert anthropic.headers["x-api-key"] == "sk-gw"
        assert "authorization" not in anthropic.headers
        assert str(openai.url) == "https://gateway.local/v1/chat/completions"
        assert openai.headers["authorization"] == "Bearer sk-gw"


class TestStreaming:
    @pytest.mark.asyncio
    async def test_yields_raw_bytes(self):
        raw = openai_delta("Hel") + openai_delta("lo") + DONE
        transport, _ = _recording_transport(
            lambda r: httpx.Response(200, content=raw, headers={"content-type": "text/event-stream"})
        )
        client = HTTPCompletionClient(transport=transport)

        chunks = await client.invoke(PAYLOAD, timeout=30, stream=True)
        received = b"".join([chunk async for chunk in chunks])

        assert received == raw

    @pytest.mark.asyncio
    async def test_non_2xx_raises_before_iteration(self):
        error = {"error": {"message": "model overloaded"}}
        transport, _ = _recording_transport(lambda r: httpx.Response(503, json=error))
        client = HTTPCompletionClient(transport=transport)

        with pytest.raises(UpstreamError, match="HTTP 503: model overloaded") as exc_info:
            await client.invoke(PAYLOAD, timeout=30, stream=True)

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connect_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = HTTPCompletionClient(transport=httpx.MockTransport(refuse))

        with pytest.raises(UpstreamError, match="HTTP error"):
            await client.invoke(PAYLOAD, timeout=30, stream=True)


class TestFromConfig:
    def test_reads_key_from_env(self, monkeypatch):
        monkeypatch.setenv("TEST_LLM_KEY", "sk-from-env")
        client = HTTPCompletionClient.from_config(
            UpstreamConfig(base_url="https://llm.local/v1/", api_key_env="TEST_LLM_KEY"),
        )
        assert client.api_key == "sk-from-env"
        assert client.base_url == "https://llm.local/v1"
        assert client.format.name == "openai"

    def test_missing_env_gives_empty_key(self, monkeypatch):
        monkeypatch.delenv("TEST_LLM_KEY", raising=False)
        client = HTTPCompletionClient.from_config(UpstreamConfig(api_key_env="TEST_LLM_KEY"))
        assert client.api_key == ""
