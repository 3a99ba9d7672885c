"""Provider wire formats for chat completion requests and responses.

Each provider (OpenAI-compatible, Anthropic) has a distinct request and
response schema.  ``ProviderFormat`` is the strategy interface; concrete
subclasses adapt messages, build payloads, and decode batch responses and
streaming events.

Usage:

    fmt = get_format(caps.api_format)
    payload = fmt.build_payload(request)
    text = fmt.extract_delta_text(event)
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import ChatRole, CompletionRequest, Message


# ---------------------------------------------------------------------------
# ABC
# ---------------------------------------------------------------------------

class ProviderFormat(ABC):
    """Strategy interface for provider-specific request/response handling."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier: ``"openai"``, ``"anthropic"``."""

    # -- Request building ----------------------------------------------------

    def role_for(self, role: ChatRole) -> str:
        """Map a ChatRole onto the provider's role string."""
        if role is ChatRole.SYSTEM:
            return "system"
        if role is ChatRole.HUMAN:
            return "user"
        if role is ChatRole.AI:
            return "assistant"
        raise ValueError(f"Unhandled chat role: {role!r}")

    def adapt_messages(self, messages: list[Message]) -> list[dict]:
        """Convert domain messages into provider message dicts."""
        return [
            {"role": self.role_for(m.role), "content": m.content}
            for m in messages
        ]

    @abstractmethod
    def build_payload(self, request: CompletionRequest) -> dict:
        """Build the JSON request body for a completion call."""

    @abstractmethod
    def endpoint_path(self) -> str:
        """Path appended to the upstream base URL."""

    @abstractmethod
    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Headers authenticating a request with *api_key*."""

    # -- Batch response parsing ----------------------------------------------

    @abstractmethod
    def extract_answer(self, body: dict) -> str:
        """Extract assistant text from a non-streaming response."""

    @abstractmethod
    def extract_total_tokens(self, body: dict) -> int:
        """Provider-reported total tokens, or 0 if absent."""

    @abstractmethod
    def extract_finish_reason(self, body: dict) -> str:
        """Finish reason of a non-streaming response."""

    # -- Streaming event parsing ---------------------------------------------

    @abstractmethod
    def extract_delta_text(self, data: dict) -> str:
        """Extract text delta from a streaming event payload."""

    def extract_stream_finish_reason(self, data: dict) -> str:
        """Finish reason carried by a streaming event, if any."""
        return ""

    def extract_error(self, data: dict) -> object | None:
        """Return the error payload of an event, or None."""
        return data.get("error") or None

    def is_terminal_event(self, data: dict) -> bool:
        """True when the event closes the stream (besides ``[DONE]``)."""
        return False


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAIFormat(ProviderFormat):
    """OpenAI Chat Completions API format (and compatible servers)."""

    @property
    def name(self) -> str:
        return "openai"

    def build_payload(self, request: CompletionRequest) -> dict:
        return {
            "model": request.model,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "messages": list(request.messages),
            "stream": request.stream,
        }

    def endpoint_path(self) -> str:
        return "/chat/completions"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def extract_answer(self, body: dict) -> str:
        choices = body.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            return message.get("content", "") or ""
        return ""

    def extract_total_tokens(self, body: dict) -> int:
        usage = body.get("usage") or {}
        return int(usage.get("total_tokens") or 0)

    def extract_finish_reason(self, body: dict) -> str:
        choices = body.get("choices") or []
        if choices:
            return choices[0].get("finish_reason") or ""
        return ""

    def extract_delta_text(self, data: dict) -> str:
        choices = data.get("choices") or []
        if choices:
            delta = choices[0].get("delta") or {}
            return delta.get("content", "") or ""
        return ""

    def extract_stream_finish_reason(self, data: dict) -> str:
        choices = data.get("choices") or []
        if choices:
            return choices[0].get("finish_reason") or ""
        return ""


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

API_VERSION = "2023-06-01"


class AnthropicFormat(ProviderFormat):
    """Anthropic Messages API format.

    Key differences:
    - System messages move to the top-level ``system`` field
    - SSE delta: ``content_block_delta`` events with ``delta.text``
    - Stream ends with a ``message_stop`` event instead of ``[DONE]``
    """

    @property
    def name(self) -> str:
        return "anthropic"

    def build_payload(self, request: CompletionRequest) -> dict:
        system_parts = [m["content"] for m in request.messages if m["role"] == "system"]
        chat = [m for m in request.messages if m["role"] != "system"]
        payload: dict = {
            "model": request.model,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "messages": chat,
            "stream": request.stream,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        return payload

    def endpoint_path(self) -> str:
        return "/messages"

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key, "anthropic-version": API_VERSION}

    def extract_answer(self, body: dict) -> str:
        content = body.get("content") or []
        return "".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )

    def extract_total_tokens(self, body: dict) -> int:
        usage = body.get("usage") or {}
        return int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)

    def extract_finish_reason(self, body: dict) -> str:
        return body.get("stop_reason") or ""

    def extract_delta_text(self, data: dict) -> str:
        if data.get("type") != "content_block_delta":
            return ""
        delta = data.get("delta") or {}
        return delta.get("text", "") or ""

    def extract_stream_finish_reason(self, data: dict) -> str:
        if data.get("type") == "message_delta":
            return (data.get("delta") or {}).get("stop_reason") or ""
        return ""

    def is_terminal_event(self, data: dict) -> bool:
        return data.get("type") == "message_stop"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_FORMAT_REGISTRY: dict[str, ProviderFormat] = {
    "openai": OpenAIFormat(),
    "anthropic": AnthropicFormat(),
}


def get_format(name: str) -> ProviderFormat:
    """Look up a format by name."""
    try:
        return _FORMAT_REGISTRY[name]
    except KeyError:
        raise ValueError(f"Unknown api format: {name}") from None
