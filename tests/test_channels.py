"""Tests for SSE framing and live channels."""

import io
import json

import pytest

from chat_dispatch.channels import (
    QueueChannel,
    StdoutChannel,
    frame_increment,
    sse_event,
    text_delta_event,
)
from chat_dispatch.prompts import replace_variables


def test_sse_event_framing():
    assert sse_event("x") == b"data: x\n\n"
    assert sse_event("x", event="answer") == b"event: answer\ndata: x\n\n"


def test_text_delta_event_shape():
    data = json.loads(text_delta_event("héllo"))
    assert data["choices"][0]["delta"] == {"role": "assistant", "content": "héllo"}
    assert data["choices"][0]["finish_reason"] is None


def test_frame_increment_detail():
    assert frame_increment("a").startswith(b"data: ")
    assert frame_increment("a", detail=True).startswith(b"event: answer\n")


def test_replace_variables_leaves_unknown():
    assert replace_variables("{{a}}-{{b}}-{{ c }}", {"a": 1}) == "1-{{b}}-{{ c }}"


class TestQueueChannel:
    @pytest.mark.asyncio
    async def test_drains_until_closed(self):
        channel = QueueChannel()
        channel.push(b"one")
        channel.push(b"two")
        channel.close()
        channel.push(b"ignored")

        received = [event async for event in channel]

        assert received == [b"one", b"two"]
        assert channel.is_closed()

    def test_close_twice(self):
        channel = QueueChannel()
        channel.close()
        channel.close()
        assert channel.is_closed()


class TestStdoutChannel:
    def test_writes_delta_text(self):
        out = io.StringIO()
        channel = StdoutChannel(out)
        channel.push(frame_increment("Hel"))
        channel.push(frame_increment("", detail=True))
        channel.push(frame_increment("lo", detail=True))
        assert out.getvalue() == "Hello"
        assert channel.is_closed() is False
