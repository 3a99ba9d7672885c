"""chat-dispatch: token-budgeted chat completion dispatch with live streaming."""

from .config import load_config
from .dispatcher import ChatDispatcher
from .types import (
    CapacityError,
    ChatRole,
    Credential,
    DispatchConfig,
    DispatchError,
    DispatchRequest,
    DispatchResult,
    Message,
    ModelCapabilities,
    PolicyError,
    QuoteItem,
    UpstreamError,
    UsageRecord,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "ChatDispatcher",
    "load_config",
    "CapacityError",
    "ChatRole",
    "Credential",
    "DispatchConfig",
    "DispatchError",
    "DispatchRequest",
    "DispatchResult",
    "Message",
    "ModelCapabilities",
    "PolicyError",
    "QuoteItem",
    "UpstreamError",
    "UsageRecord",
    "ValidationError",
]
