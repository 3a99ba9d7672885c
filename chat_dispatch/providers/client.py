"""HTTPCompletionClient: OpenAI-compatible or Anthropic endpoint via httpx."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator

import httpx

from ..types import Credential, UpstreamConfig, UpstreamError
from .formats import ProviderFormat, get_format

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


def _upstream_error(status_code: int, body: bytes) -> UpstreamError:
    text = body.decode("utf-8", errors="replace")
    try:
        payload = json.loads(text)
    except ValueError:
        payload = {"error": text}
    error = payload.get("error", payload) if isinstance(payload, dict) else payload
    message = error.get("message") if isinstance(error, dict) else None
    return UpstreamError(
        f"HTTP {status_code}: {message or text[:200]}",
        payload=payload,
        status_code=status_code,
    )


async def _iter_stream(client: httpx.AsyncClient, upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for raw_chunk in upstream.aiter_bytes():
            yield raw_chunk
    finally:
        await upstream.aclose()
        await client.aclose()


class HTTPCompletionClient:
    """Completion client speaking the configured provider format over HTTP.

    A per-request ``Credential`` replaces the configured key (and base URL
    when given), so callers can bill against their own account.
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str = "",
        api_format: str = "openai",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.format = get_format(api_format)
        self._transport = transport

    @classmethod
    def from_config(cls, config: UpstreamConfig) -> HTTPCompletionClient:
        return cls(
            base_url=config.base_url,
            api_key=os.environ.get(config.api_key_env, ""),
            api_format=config.api_format,
        )

    def _target(
        self,
        credential: Credential | None,
        fmt: ProviderFormat,
    ) -> tuple[str, dict[str, str]]:
        base_url = self.base_url
        api_key = self.api_key
        if credential is not None:
            api_key = credential.api_key
            if credential.base_url:
                base_url = credential.base_url.rstrip("/")
        headers = {"Content-Type": "application/json", **fmt.auth_headers(api_key)}
        return f"{base_url}{fmt.endpoint_path()}", headers

    async def invoke(
        self,
        payload: dict,
        *,
        timeout: float,
        stream: bool,
        credential: Credential | None = None,
        api_format: str | None = None,
    ) -> dict | AsyncIterator[bytes]:
        """Send a completion request.

        Batch mode returns the decoded JSON body. Streaming mode returns an
        async iterator over raw response bytes; the status is checked before
        the iterator is handed out, so non-2xx responses raise here.

        ``api_format`` selects the endpoint path and auth headers for this
        call; it defaults to the client's configured format.
        """
        fmt = get_format(api_format) if api_format else self.format
        url, headers = self._target(credential, fmt)
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=CONNECT_TIMEOUT),
            transport=self._transport,
        )

        if not stream:
            async with client:
                try:
                    response = await client.post(url, headers=headers, json=payload)
                except httpx.HTTPError as e:
                    raise UpstreamError(f"HTTP error: {e}") from e
            if response.status_code >= 300:
                raise _upstream_error(response.status_code, response.content)
            try:
                return response.json()
            except ValueError as e:
                raise UpstreamError(f"Invalid JSON from upstream: {e}", payload=response.text) from e

        req = client.build_request("POST", url, headers=headers, json=payload)
        try:
            upstream = await client.send(req, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            raise UpstreamError(f"HTTP error: {e}") from e

        if upstream.status_code >= 300:
            error_bytes = await upstream.aread()
            await upstream.aclose()
            await client.aclose()
            logger.error(
                "Upstream stream rejected: %d %s",
                upstream.status_code, error_bytes[:200].decode("utf-8", errors="replace"),
            )
            raise _upstream_error(upstream.status_code, error_bytes)

        return _iter_stream(client, upstream)
