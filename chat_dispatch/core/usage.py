"""UsageReporter: token totals, price, and a redacted history preview."""

from __future__ import annotations

from ..types import (
    ChatRole,
    Credential,
    Message,
    ModelCapabilities,
    PriceLookup,
    QuoteItem,
    TokenCounter,
    UsageRecord,
)

PREVIEW_CHARS = 15
PREVIEW_MARKER = "..."


def history_preview(messages: list[Message]) -> list[Message]:
    """Shorten older non-System messages to a short prefix.

    System scaffolding and the final exchange (last two messages) are kept
    verbatim; every other message longer than 15 chars is cut to 15 chars
    plus a marker.
    """
    preview: list[Message] = []
    for i, msg in enumerate(messages):
        if msg.role == ChatRole.SYSTEM or i >= len(messages) - 2:
            preview.append(msg)
            continue
        content = msg.content
        if len(content) > PREVIEW_CHARS:
            content = content[:PREVIEW_CHARS] + PREVIEW_MARKER
        preview.append(Message(role=msg.role, content=content))
    return preview


def build_price_lookup(models: dict[str, ModelCapabilities]) -> PriceLookup:
    """Price lookup over the capability table's ``price_per_1k`` rates."""

    def lookup(model: str, tokens: int) -> float:
        # Exact match first, then substring match (e.g. "gpt-4o" in "gpt-4o-2024-08-06")
        caps = models.get(model)
        if caps is None:
            model_lower = model.lower()
            for key, val in models.items():
                if key.lower() in model_lower:
                    caps = val
                    break
        rate = caps.price_per_1k if caps else 0.0
        return (tokens / 1000) * rate

    return lookup


class UsageReporter:
    """Build the per-dispatch UsageRecord."""

    def __init__(self, token_counter: TokenCounter, price_lookup: PriceLookup) -> None:
        self.token_counter = token_counter
        self.price_lookup = price_lookup

    def complete_messages(self, filtered: list[Message], answer: str) -> list[Message]:
        return [*filtered, Message(role=ChatRole.AI, content=answer)]

    def total_tokens(self, complete_messages: list[Message], reported: int = 0) -> int:
        """Provider-reported usage when present, else a local count."""
        if reported:
            return reported
        return self.token_counter(complete_messages)

    def price(self, model: str, tokens: int, credential: Credential | None = None) -> float:
        if credential is not None and credential.api_key:
            return 0.0
        return self.price_lookup(model, tokens)

    def report(
        self,
        *,
        module_name: str,
        caps: ModelCapabilities,
        question: str,
        max_token: int,
        quotes: list[QuoteItem],
        complete_messages: list[Message],
        total_tokens: int,
        credential: Credential | None = None,
    ) -> UsageRecord:
        return UsageRecord(
            module_name=module_name,
            price=self.price(caps.model, total_tokens, credential),
            model=caps.display_name,
            total_tokens=total_tokens,
            question=question,
            max_token=max_token,
            quote_list=tuple(quotes),
            history_preview=tuple(history_preview(complete_messages)),
        )
