"""ChatDispatcher: main orchestrator wiring budgeting, invocation, streaming, and usage."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from .channels import frame_increment
from .config import SUPPORTED_API_FORMATS, load_config
from .core.assembler import PromptAssembler
from .core.budget import fit_quotes, reserve_response_tokens
from .core.invoker import CompletionInvoker
from .core.stream import StreamAggregator, StreamState
from .core.usage import UsageReporter, build_price_lookup
from .prompts import DEFAULT_QUOTE_PROMPT, DEFAULT_QUOTE_TEMPLATE
from .providers.client import HTTPCompletionClient
from .providers.formats import ProviderFormat, get_format
from .token_counter import create_message_counter
from .types import (
    CapacityError,
    CompletionClient,
    CompletionResponse,
    CompletionResult,
    DispatchConfig,
    DispatchRequest,
    DispatchResult,
    LiveChannel,
    ModelCapabilities,
    Moderator,
    PriceLookup,
    TokenCounter,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ChatDispatcher:
    """Run one chat completion per ``dispatch`` call.

    Usage:
        dispatcher = ChatDispatcher(config_path="./chat-dispatch.yaml")
        result = await dispatcher.dispatch(
            DispatchRequest(question="Hi", stream=True), channel=channel,
        )
        result.answer_text, result.usage

    Collaborators default to the configured HTTP client, token counter and
    capability-table pricing; each can be injected instead.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        config: DispatchConfig | None = None,
        *,
        client: CompletionClient | None = None,
        token_counter: TokenCounter | None = None,
        moderator: Moderator | None = None,
        price_lookup: PriceLookup | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self._token_counter = token_counter or create_message_counter(self.config.token_counter)
        self._client = client or HTTPCompletionClient.from_config(self.config.upstream)
        self._moderator = moderator

        self._invoker = CompletionInvoker(self._client, timeout=self.config.request_timeout)
        self._assembler = PromptAssembler(
            self._token_counter,
            context_margin=self.config.context_margin,
            quote_prompt=self.config.quote_prompt or DEFAULT_QUOTE_PROMPT,
        )
        self._usage = UsageReporter(
            self._token_counter,
            price_lookup or build_price_lookup(self.config.models),
        )

    def resolve_model(self, model: str) -> ModelCapabilities:
        """Capabilities for *model*, falling back to the configured default."""
        caps = self.config.models.get(model or self.config.default_model)
        if caps is None:
            raise ValidationError("The chat model is undefined, you need to select a chat model.")
        if caps.api_format not in SUPPORTED_API_FORMATS:
            raise ValidationError(f"Model '{caps.model}' has an unknown api_format '{caps.api_format}'")
        return caps

    async def _moderate(self, text: str) -> None:
        if self._moderator is None:
            raise ValidationError("Model requires moderation but no moderator is configured")
        await self._moderator.moderate(text)

    async def dispatch(
        self,
        request: DispatchRequest,
        channel: LiveChannel | None = None,
    ) -> DispatchResult:
        """Assemble, invoke, and account for one chat completion.

        Raises a DispatchError subclass on every fatal path; no partial
        usage record is produced then.
        """
        t_start = time.monotonic()
        if not request.question:
            raise ValidationError("Question is empty")

        caps = self.resolve_model(request.model)
        logger.info(
            "Dispatch start module=%s model=%s stream=%s history=%d quotes=%d",
            request.module_name, caps.model, request.stream,
            len(request.history), len(request.quotes),
        )

        quote_template = request.quote_template or self.config.quote_template or DEFAULT_QUOTE_TEMPLATE
        quotes, quote_text = fit_quotes(
            request.quotes, quote_template, caps.quote_max_token, self._token_counter,
        )

        if caps.censor_required:
            await self._moderate(f"{request.system_prompt}\n{quote_text}\n{request.question}")

        messages, filtered = self._assembler.assemble(
            system_prompt=request.system_prompt,
            history=request.history,
            quote_text=quote_text,
            quote_prompt=request.quote_prompt,
            limit_prompt=request.limit_prompt,
            question=request.question,
            caps=caps,
        )

        requested = request.max_tokens if request.max_tokens is not None else self.config.default_max_tokens
        prompt_tokens = self._token_counter(filtered)
        max_tokens = reserve_response_tokens(requested, caps.context_max_token, prompt_tokens)
        if max_tokens <= 0:
            raise CapacityError(
                f"Prompt uses {prompt_tokens} of {caps.context_max_token} context tokens; "
                f"no room left for a response"
            )
        if max_tokens < requested:
            logger.warning(
                "Clamped max_tokens %d -> %d (prompt=%d, context=%d)",
                requested, max_tokens, prompt_tokens, caps.context_max_token,
            )

        fmt = get_format(caps.api_format)
        completion = self._invoker.build_request(
            caps, messages, request.temperature, max_tokens, request.stream,
        )
        response = await self._invoker.invoke(completion, fmt, request.credential)

        if request.stream:
            result = await self._collect_stream(response, fmt, request, channel)
        else:
            result = self._parse_batch(response, fmt)

        complete = self._usage.complete_messages(filtered, result.answer_text)
        total_tokens = self._usage.total_tokens(complete, result.total_tokens)
        usage = self._usage.report(
            module_name=request.module_name,
            caps=caps,
            question=request.question,
            max_token=max_tokens,
            quotes=quotes,
            complete_messages=complete,
            total_tokens=total_tokens,
            credential=request.credential,
        )

        logger.info(
            "Dispatch done model=%s stream=%s finish=%s tokens=%d price=%.6f quotes=%d/%d elapsed=%dms",
            caps.model, request.stream, result.finish_reason or "-", total_tokens, usage.price,
            len(quotes), len(request.quotes), int((time.monotonic() - t_start) * 1000),
        )
        return DispatchResult(
            answer_text=result.answer_text,
            usage=usage,
            finish=True,
            finish_reason=result.finish_reason,
        )

    async def _collect_stream(
        self,
        response: CompletionResponse,
        fmt: ProviderFormat,
        request: DispatchRequest,
        channel: LiveChannel | None,
    ) -> CompletionResult:
        if isinstance(response, dict):
            raise UpstreamError("Expected a streaming response from the completion client")

        aggregator = StreamAggregator(fmt, channel=channel, detail=request.detail)
        outcome = await aggregator.run(response)

        if (
            request.has_answer_targets
            and channel is not None
            and outcome.state is not StreamState.CLIENT_CLOSED
            and not channel.is_closed()
        ):
            channel.push(frame_increment("\n", request.detail))

        return CompletionResult(answer_text=outcome.answer, finish_reason=outcome.finish_reason)

    def _parse_batch(self, response: CompletionResponse, fmt: ProviderFormat) -> CompletionResult:
        if not isinstance(response, dict):
            raise UpstreamError("Expected a JSON response from the completion client")

        error = fmt.extract_error(response)
        if error is not None:
            message = error.get("message") if isinstance(error, dict) else None
            raise UpstreamError(str(message or error), payload=error)

        return CompletionResult(
            answer_text=fmt.extract_answer(response),
            total_tokens=fmt.extract_total_tokens(response),
            finish_reason=fmt.extract_finish_reason(response),
        )
