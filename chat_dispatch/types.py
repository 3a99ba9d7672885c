"""All dataclasses, Protocols, and exceptions for chat-dispatch."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Union, runtime_checkable


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class ChatRole(str, Enum):
    """Who authored a message in the assembled conversation."""
    SYSTEM = "System"
    HUMAN = "Human"
    AI = "AI"


@dataclass
class Message:
    role: ChatRole
    content: str


@dataclass
class QuoteItem:
    """A retrieved reference passage. Fields are substituted into the quote template."""
    fields: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelCapabilities:
    """Static capability row for one chat model. Never mutated by a dispatch."""
    model: str                      # id sent to the provider
    name: str = ""                  # display name recorded in usage
    context_max_token: int = 4096
    quote_max_token: int = 2000
    max_temperature: float = 1.0
    default_system: str = ""        # provider-level default instruction
    censor_required: bool = False
    price_per_1k: float = 0.0
    api_format: str = "openai"      # "openai" or "anthropic"

    @property
    def display_name(self) -> str:
        return self.name or self.model


# ---------------------------------------------------------------------------
# Requests & results
# ---------------------------------------------------------------------------

@dataclass
class Credential:
    """Caller-supplied provider account (bring-your-own key)."""
    api_key: str
    base_url: str = ""


@dataclass
class CompletionRequest:
    model: str
    temperature: float   # provider scale, already normalized
    max_tokens: int
    messages: list[dict]
    stream: bool = False


@dataclass
class CompletionResult:
    answer_text: str
    total_tokens: int = 0
    finish_reason: str = ""


@dataclass
class DispatchRequest:
    """Inputs of one chat-completion dispatch."""
    question: str
    module_name: str = "AI Chat"
    model: str = ""                  # empty -> DispatchConfig.default_model
    temperature: float = 0.0         # 0-10 caller scale
    max_tokens: int | None = None    # None -> DispatchConfig.default_max_tokens
    history: list[Message] = field(default_factory=list)
    quotes: list[QuoteItem] = field(default_factory=list)
    system_prompt: str = ""
    limit_prompt: str = ""
    quote_template: str = ""
    quote_prompt: str = ""
    stream: bool = False
    detail: bool = False             # name forwarded SSE events "answer"
    has_answer_targets: bool = False # answer feeds another module downstream
    credential: Credential | None = None


@dataclass(frozen=True)
class UsageRecord:
    module_name: str
    price: float
    model: str
    total_tokens: int
    question: str
    max_token: int
    quote_list: tuple[QuoteItem, ...] = ()
    history_preview: tuple[Message, ...] = ()


@dataclass
class DispatchResult:
    answer_text: str
    usage: UsageRecord
    finish: bool = True
    finish_reason: str = ""          # provider stop reason, "" when none was reported


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class UpstreamConfig:
    base_url: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    api_format: str = "openai"


@dataclass
class DispatchConfig:
    default_model: str = ""
    models: dict[str, ModelCapabilities] = field(default_factory=dict)
    token_counter: str = "estimate"
    context_margin: int = 300
    default_max_tokens: int = 4000
    request_timeout: float = 480.0
    quote_template: str = ""
    quote_prompt: str = ""
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DispatchError(Exception):
    """Base for every fatal dispatch failure. ``str(err)`` is user-facing."""


class ValidationError(DispatchError):
    pass


class PolicyError(DispatchError):
    pass


class CapacityError(DispatchError):
    pass


class UpstreamError(DispatchError):
    def __init__(self, message: str, payload: object = None, status_code: int | None = None):
        super().__init__(message)
        self.payload = payload
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@runtime_checkable
class TokenCounter(Protocol):
    def __call__(self, messages: list[Message]) -> int: ...


@runtime_checkable
class Moderator(Protocol):
    async def moderate(self, text: str) -> None: ...


CompletionResponse = Union[dict, AsyncIterator[bytes]]


@runtime_checkable
class CompletionClient(Protocol):
    async def invoke(
        self,
        payload: dict,
        *,
        timeout: float,
        stream: bool,
        credential: Credential | None = None,
        api_format: str | None = None,
    ) -> CompletionResponse: ...


@runtime_checkable
class PriceLookup(Protocol):
    def __call__(self, model: str, tokens: int) -> float: ...


@runtime_checkable
class LiveChannel(Protocol):
    def push(self, event: bytes) -> None: ...

    def is_closed(self) -> bool: ...
