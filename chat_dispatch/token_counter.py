"""Token counting utilities."""

from __future__ import annotations

from typing import Callable

from .types import Message

# Per-message framing overhead of chat-formatted prompts, and the tokens
# that prime the assistant reply.
TOKENS_PER_MESSAGE = 3
REPLY_PRIMING_TOKENS = 3


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 chars per token."""
    return max(1, len(text) // 4)


def create_token_counter(mode: str = "estimate") -> Callable[[str], int]:
    """Factory for text token counters.

    Modes:
        "estimate" - len(text) // 4 (zero deps)
        "tiktoken" - requires tiktoken package
        "callable:module.path:func" - custom callable
    """
    if mode == "estimate":
        return estimate_tokens

    if mode == "tiktoken":
        try:
            import tiktoken
        except ImportError:
            raise ImportError(
                "tiktoken not installed. Install with: pip install chat-dispatch[tiktoken]"
            )
        enc = tiktoken.get_encoding("cl100k_base")
        return lambda text: len(enc.encode(text))

    if mode.startswith("callable:"):
        # Format: callable:module.path:func_name
        parts = mode[len("callable:"):].rsplit(":", 1)
        if len(parts) != 2:
            raise ValueError(f"Invalid callable spec: {mode}. Expected callable:module:func")
        module_path, func_name = parts
        import importlib
        mod = importlib.import_module(module_path)
        return getattr(mod, func_name)

    raise ValueError(f"Unknown token counter mode: {mode}")


class MessageTokenCounter:
    """Count tokens for a sequence of role-tagged messages.

    Each message costs its framing overhead plus role and content tokens;
    a non-empty sequence adds the reply priming tokens once.
    """

    def __init__(self, text_counter: Callable[[str], int] | None = None) -> None:
        self.text_counter = text_counter or estimate_tokens

    def __call__(self, messages: list[Message]) -> int:
        if not messages:
            return 0
        total = REPLY_PRIMING_TOKENS
        for msg in messages:
            total += TOKENS_PER_MESSAGE
            total += self.text_counter(msg.role.value)
            if msg.content:
                total += self.text_counter(msg.content)
        return total


def create_message_counter(mode: str = "estimate") -> MessageTokenCounter:
    """Build a message-level counter on top of ``create_token_counter(mode)``."""
    return MessageTokenCounter(create_token_counter(mode))
