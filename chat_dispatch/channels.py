"""Live output channels and SSE framing for forwarded answer text."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator
from typing import TextIO

ANSWER_EVENT = "answer"


def sse_event(data: str, event: str | None = None) -> bytes:
    """Frame *data* as one SSE event."""
    head = f"event: {event}\n" if event else ""
    return f"{head}data: {data}\n\n".encode()


def text_delta_event(text: str) -> str:
    """Wrap an answer increment as an OpenAI-style chat completion chunk."""
    return json.dumps({
        "id": "",
        "object": "",
        "created": 0,
        "model": "",
        "choices": [{
            "delta": {"role": "assistant", "content": text},
            "index": 0,
            "finish_reason": None,
        }],
    }, ensure_ascii=False)


def frame_increment(text: str, detail: bool = False) -> bytes:
    """SSE bytes for one forwarded increment."""
    return sse_event(text_delta_event(text), event=ANSWER_EVENT if detail else None)


class QueueChannel:
    """Channel backed by an unbounded asyncio.Queue.

    ``push`` never awaits. A web handler drains it with ``async for`` and
    calls ``close()`` when its client disconnects.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False

    def push(self, event: bytes) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class StdoutChannel:
    """Print answer increments as plain text (CLI use)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout

    def push(self, event: bytes) -> None:
        for line in event.decode("utf-8").splitlines():
            if not line.startswith("data: "):
                continue
            data = json.loads(line[6:])
            choices = data.get("choices") or [{}]
            text = (choices[0].get("delta") or {}).get("content", "")
            if text:
                self.stream.write(text)
                self.stream.flush()

    def is_closed(self) -> bool:
        return False
