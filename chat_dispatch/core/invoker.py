"""CompletionInvoker: normalize request parameters and call the completion client."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from ..providers.formats import ProviderFormat, get_format
from ..types import (
    CompletionClient,
    CompletionRequest,
    CompletionResponse,
    Credential,
    ModelCapabilities,
)

logger = logging.getLogger(__name__)

MIN_TEMPERATURE = 0.01
TEMPERATURE_STEP = Decimal("0.01")
DEFAULT_TIMEOUT = 480.0


def normalize_temperature(raw: float, caps: ModelCapabilities) -> float:
    """Map the caller's 0-10 scale onto the model's range, never below 0.01.

    Rounds to two decimals with halves going up (0.125 -> 0.13).
    """
    scaled = Decimal(caps.max_temperature * (raw / 10)).quantize(TEMPERATURE_STEP, rounding=ROUND_HALF_UP)
    return max(float(scaled), MIN_TEMPERATURE)


class CompletionInvoker:
    """Build the provider payload for one request and send it."""

    def __init__(self, client: CompletionClient, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.client = client
        self.timeout = timeout

    def build_request(
        self,
        caps: ModelCapabilities,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> CompletionRequest:
        """Prepend the model's default system text and normalize temperature."""
        prefix = (
            [{"role": "system", "content": caps.default_system}]
            if caps.default_system
            else []
        )
        return CompletionRequest(
            model=caps.model,
            temperature=normalize_temperature(temperature, caps),
            max_tokens=max_tokens,
            messages=[*prefix, *messages],
            stream=stream,
        )

    async def invoke(
        self,
        request: CompletionRequest,
        fmt: ProviderFormat | None = None,
        credential: Credential | None = None,
    ) -> CompletionResponse:
        fmt = fmt or get_format("openai")
        payload = fmt.build_payload(request)
        logger.debug(
            "Invoking %s model=%s stream=%s max_tokens=%d temperature=%.2f messages=%d",
            fmt.name, request.model, request.stream, request.max_tokens,
            request.temperature, len(request.messages),
        )
        return await self.client.invoke(
            payload,
            timeout=self.timeout,
            stream=request.stream,
            credential=credential,
            api_format=fmt.name,
        )
