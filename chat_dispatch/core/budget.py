"""ContextBudgeter: fit quotes, conversation, and response into a context window."""

from __future__ import annotations

import logging

from ..prompts import replace_variables
from ..types import CapacityError, ChatRole, Message, QuoteItem, TokenCounter

logger = logging.getLogger(__name__)


def render_quote(template: str, quote: QuoteItem, position: int) -> str:
    """Render one quote; ``{{index}}`` is the 1-based position."""
    return replace_variables(template, {**quote.fields, "index": f"{position + 1}"})


def fit_quotes(
    quotes: list[QuoteItem],
    template: str,
    max_tokens: int,
    counter: TokenCounter,
) -> tuple[list[QuoteItem], str]:
    """Keep the longest prefix of *quotes* whose rendered tokens fit *max_tokens*.

    Order is trusted as relevance order: once a quote overflows the budget,
    it and every later quote are dropped. Returns ``(retained, quote_text)``
    where ``quote_text`` joins the retained renders with newlines.
    """
    rendered: list[str] = []
    as_messages: list[Message] = []

    for i, quote in enumerate(quotes):
        text = render_quote(template, quote, i)
        as_messages.append(Message(role=ChatRole.SYSTEM, content=text))
        if counter(as_messages) > max_tokens:
            break
        rendered.append(text)

    retained = quotes[:len(rendered)]
    if len(retained) < len(quotes):
        logger.debug(
            "Quote budget %d: kept %d of %d quotes", max_tokens, len(retained), len(quotes),
        )
    return retained, "\n".join(rendered)


def filter_context(
    messages: list[Message],
    max_tokens: int,
    counter: TokenCounter,
) -> list[Message]:
    """Trim the oldest conversation turns until *messages* fit *max_tokens*.

    The trailing Human message and every System entry are pinned. History
    is kept as a contiguous most-recent suffix, in original order.

    Raises CapacityError when the pinned messages alone exceed the budget.
    """
    if not messages:
        return []
    if messages[-1].role != ChatRole.HUMAN:
        raise ValueError("Context must end with a Human message")

    last = len(messages) - 1
    pinned = {i for i, m in enumerate(messages) if m.role == ChatRole.SYSTEM or i == last}
    history = [i for i in range(len(messages)) if i not in pinned]

    def _select(indices: set[int]) -> list[Message]:
        return [messages[i] for i in sorted(indices)]

    pinned_tokens = counter(_select(pinned))
    if pinned_tokens > max_tokens:
        raise CapacityError(
            f"Prompt needs {pinned_tokens} tokens before any history, "
            f"but the context budget is {max_tokens}"
        )

    kept = set(pinned)
    for idx in reversed(history):
        if counter(_select(kept | {idx})) > max_tokens:
            break
        kept.add(idx)

    dropped = len(messages) - len(kept)
    if dropped:
        logger.debug("Context budget %d: dropped %d oldest history messages", max_tokens, dropped)
    return _select(kept)


def reserve_response_tokens(requested_max: int, context_max_token: int, prompt_tokens: int) -> int:
    """Clamp the response budget so prompt + response fit the context window.

    The result may be zero or negative; callers must reject that.
    """
    if requested_max + prompt_tokens > context_max_token:
        return context_max_token - prompt_tokens
    return requested_max
