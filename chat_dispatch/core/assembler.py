"""PromptAssembler: build the final message sequence for a completion call."""

from __future__ import annotations

from ..prompts import DEFAULT_QUOTE_PROMPT, replace_variables
from ..providers.formats import get_format
from ..types import ChatRole, Message, ModelCapabilities, TokenCounter, ValidationError
from .budget import filter_context

DEFAULT_CONTEXT_MARGIN = 300


class PromptAssembler:
    """Assemble prompt messages within the model's context window.

    Assembly order (top to bottom in final prompt):
    1. System prompt (optional)
    2. Conversation history, oldest first
    3. Limit prompt (optional)
    4. The question, wrapped with quotes when there are any

    The context filter reserves ``context_margin`` tokens of the window for
    role and formatting overhead.
    """

    def __init__(
        self,
        token_counter: TokenCounter,
        context_margin: int = DEFAULT_CONTEXT_MARGIN,
        quote_prompt: str = DEFAULT_QUOTE_PROMPT,
    ) -> None:
        self.token_counter = token_counter
        self.context_margin = context_margin
        self.quote_prompt = quote_prompt

    def build_question(self, question: str, quote_text: str, quote_prompt: str = "") -> str:
        if not quote_text:
            return question
        return replace_variables(
            quote_prompt or self.quote_prompt,
            {"quote": quote_text, "question": question},
        )

    def build_candidates(
        self,
        system_prompt: str,
        history: list[Message],
        limit_prompt: str,
        question: str,
    ) -> list[Message]:
        messages: list[Message] = []
        if system_prompt:
            messages.append(Message(role=ChatRole.SYSTEM, content=system_prompt))
        messages.extend(history)
        if limit_prompt:
            messages.append(Message(role=ChatRole.SYSTEM, content=limit_prompt))
        messages.append(Message(role=ChatRole.HUMAN, content=question))
        return messages

    def assemble(
        self,
        system_prompt: str,
        history: list[Message],
        quote_text: str,
        quote_prompt: str,
        limit_prompt: str,
        question: str,
        caps: ModelCapabilities,
    ) -> tuple[list[dict], list[Message]]:
        """Return ``(adapted_messages, filtered_messages)``.

        ``adapted_messages`` are provider dicts for the API call;
        ``filtered_messages`` are the domain messages used for usage accounting.
        """
        if not question:
            raise ValidationError("Question is empty")

        candidates = self.build_candidates(
            system_prompt,
            history,
            limit_prompt,
            self.build_question(question, quote_text, quote_prompt),
        )
        filtered = filter_context(
            candidates,
            max_tokens=caps.context_max_token - self.context_margin,
            counter=self.token_counter,
        )
        adapted = get_format(caps.api_format).adapt_messages(filtered)
        return adapted, filtered
