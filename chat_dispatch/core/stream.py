"""StreamAggregator: decode a chunked SSE completion stream and forward deltas.

State machine::

    OPEN -> READING -> DONE           [DONE] sentinel, terminal event, or end of input
                    -> ERRORED        an event carried an ``error`` field
                    -> CLIENT_CLOSED  the live channel closed mid-stream

Transport failures while reading end the stream as DONE with whatever text
arrived; only ERRORED is surfaced to the caller as a failure.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass

import httpx

from ..channels import frame_increment
from ..providers.formats import ProviderFormat
from ..types import LiveChannel, UpstreamError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

TRANSPORT_ERRORS = (httpx.HTTPError, httpx.StreamError, OSError)


# ---------------------------------------------------------------------------
# SSE parsing
# ---------------------------------------------------------------------------

@dataclass
class SSEEvent:
    event: str
    data: str


def _decode_event(raw_event: bytes) -> SSEEvent:
    decoded = raw_event.decode("utf-8", errors="replace")
    event_type = ""
    data_lines: list[str] = []
    for line in decoded.split("\n"):
        line = line.rstrip("\r")
        if line.startswith("event:"):
            event_type = line[6:].strip()
        elif line.startswith("data:"):
            value = line[5:]
            data_lines.append(value[1:] if value.startswith(" ") else value)
    return SSEEvent(event=event_type, data="\n".join(data_lines))


class SSEParser:
    """Incremental SSE parser that buffers partial events across chunks.

    Handles both ``\\r\\n\\r\\n`` and ``\\n\\n`` event boundaries.
    """

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        """Add *chunk* and return every event it completed."""
        self._buf += chunk
        events: list[SSEEvent] = []
        while True:
            idx_rn = self._buf.find(b"\r\n\r\n")
            idx_n = self._buf.find(b"\n\n")
            if idx_rn == -1 and idx_n == -1:
                break
            # Use whichever boundary comes first
            if idx_rn != -1 and (idx_n == -1 or idx_rn <= idx_n):
                end = idx_rn + 4
            else:
                end = idx_n + 2

            raw_event = self._buf[:end]
            self._buf = self._buf[end:]
            event = _decode_event(raw_event)
            if event.data:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        """Return a trailing event that arrived without its blank line."""
        raw_event, self._buf = self._buf, b""
        if not raw_event.strip():
            return []
        event = _decode_event(raw_event)
        return [event] if event.data else []


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

class StreamState(enum.Enum):
    OPEN = "open"
    READING = "reading"
    DONE = "done"
    ERRORED = "errored"
    CLIENT_CLOSED = "client_closed"


@dataclass
class StreamOutcome:
    answer: str
    state: StreamState
    finish_reason: str = ""


class StreamAggregator:
    """Accumulate streamed answer text, forwarding every delta to a channel."""

    def __init__(
        self,
        fmt: ProviderFormat,
        channel: LiveChannel | None = None,
        detail: bool = False,
    ) -> None:
        self.fmt = fmt
        self.channel = channel
        self.detail = detail
        self.state = StreamState.OPEN
        self._parts: list[str] = []
        self._error: object | None = None
        self._finish_reason = ""

    def _channel_closed(self) -> bool:
        return self.channel is not None and self.channel.is_closed()

    def _forward(self, text: str) -> None:
        self._parts.append(text)
        if self.channel is not None:
            self.channel.push(frame_increment(text, self.detail))

    def _handle_events(self, events: list[SSEEvent]) -> None:
        """Process one parsed batch. May move the state to DONE."""
        for event in events:
            data_str = event.data.strip()
            if data_str == DONE_SENTINEL:
                self.state = StreamState.DONE
                return
            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON stream event: %.80s", data_str)
                continue
            if not isinstance(data, dict):
                continue

            error = self.fmt.extract_error(data)
            if error is not None:
                if self._error is None:
                    self._error = error
                continue

            if self.fmt.is_terminal_event(data):
                self.state = StreamState.DONE
                return

            self._finish_reason = self.fmt.extract_stream_finish_reason(data) or self._finish_reason
            self._forward(self.fmt.extract_delta_text(data))

    async def run(self, chunks: AsyncIterable[bytes]) -> StreamOutcome:
        """Consume *chunks* to completion.

        Returns the accumulated answer on DONE and CLIENT_CLOSED.
        Raises UpstreamError when the stream carried an error event.
        """
        parser = SSEParser()
        self.state = StreamState.READING

        try:
            async for chunk in chunks:
                if self._channel_closed():
                    self.state = StreamState.CLIENT_CLOSED
                    break
                self._handle_events(parser.feed(chunk))
                if self.state is StreamState.DONE or self._error is not None:
                    break
            else:
                self._handle_events(parser.flush())
        except TRANSPORT_ERRORS as e:
            logger.warning(
                "Stream transport error, keeping %d chars of partial answer: %s",
                sum(len(p) for p in self._parts), e,
            )
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        answer = "".join(self._parts)

        if self._error is not None:
            self.state = StreamState.ERRORED
            logger.error("Upstream stream error: %s", self._error)
            raise UpstreamError(_error_message(self._error), payload=self._error)

        if self.state is StreamState.CLIENT_CLOSED:
            logger.warning("Client disconnected; returning %d chars of partial answer", len(answer))
        else:
            self.state = StreamState.DONE

        return StreamOutcome(answer=answer, state=self.state, finish_reason=self._finish_reason)


def _error_message(error: object) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
    return str(error)
