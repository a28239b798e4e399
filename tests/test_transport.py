"""
NDJSON 流式传输测试
"""
import asyncio
import json
import pytest
from fastapi.responses import StreamingResponse

from audit_copilot.integrations.agent import StreamingAgent
from audit_copilot.integrations.transport import NDJSON_MEDIA_TYPE, stream_ndjson
from audit_copilot.models.events import StreamEvent


class FakeAgent(StreamingAgent):
    """按脚本产出事件的智能体"""

    agent_id = "fake"

    def __init__(self, events, fail_after=None):
        self.events = events
        self.fail_after = fail_after
        self.close_calls = 0
        self.stream_finalized = False

    async def stream_message(self, message, attachments=None, history=None):
        try:
            for index, event in enumerate(self.events):
                if self.fail_after is not None and index == self.fail_after:
                    raise RuntimeError("socket closed")
                yield event
        finally:
            self.stream_finalized = True

    async def close(self):
        self.close_calls += 1


class SlowCloseAgent(FakeAgent):
    """事件之间有间隔、关闭需要等待的智能体"""

    def __init__(self, events):
        super().__init__(events)
        self.close_finished = 0

    async def stream_message(self, message, attachments=None, history=None):
        for event in self.events:
            await asyncio.sleep(0.01)
            yield event

    async def close(self):
        self.close_calls += 1
        await asyncio.sleep(0.01)
        self.close_finished += 1


async def read_all(stream):
    return [json.loads(line) async for line in stream]


@pytest.mark.asyncio
async def test_lines_end_with_done():
    agent = FakeAgent([StreamEvent.text("Hello"), StreamEvent.text(" world"), StreamEvent.done()])

    lines = await read_all(stream_ndjson(agent, "hi"))

    assert lines == [
        {"type": "text", "content": "Hello"},
        {"type": "text", "content": " world"},
        {"type": "done"},
    ]
    assert agent.close_calls == 1


@pytest.mark.asyncio
async def test_each_line_is_one_json_object():
    agent = FakeAgent([StreamEvent.text("line\nbreak"), StreamEvent.done()])

    raw = [line async for line in stream_ndjson(agent, "hi")]

    assert all(line.endswith("\n") and line.count("\n") == 1 for line in raw)
    assert json.loads(raw[0])["content"] == "line\nbreak"


@pytest.mark.asyncio
async def test_missing_done_is_appended():
    agent = FakeAgent([StreamEvent.text("partial")])

    lines = await read_all(stream_ndjson(agent, "hi"))

    assert lines[-1] == {"type": "done"}
    assert sum(1 for line in lines if line["type"] == "done") == 1


@pytest.mark.asyncio
async def test_nothing_after_done():
    agent = FakeAgent([StreamEvent.done(), StreamEvent.text("late")])

    lines = await read_all(stream_ndjson(agent, "hi"))

    assert lines == [{"type": "done"}]
    assert agent.stream_finalized is True


@pytest.mark.asyncio
async def test_stream_exception_becomes_error_line():
    agent = FakeAgent([StreamEvent.text("a"), StreamEvent.text("b")], fail_after=1)

    lines = await read_all(stream_ndjson(agent, "hi"))

    assert [line["type"] for line in lines] == ["text", "error", "done"]
    assert "socket closed" in lines[1]["error"]
    assert agent.close_calls == 1


@pytest.mark.asyncio
async def test_disconnect_closes_agent_once():
    agent = FakeAgent([StreamEvent.text(str(i)) for i in range(10)] + [StreamEvent.done()])
    stream = stream_ndjson(agent, "hi")

    first = await stream.__anext__()
    await stream.aclose()

    assert json.loads(first) == {"type": "text", "content": "0"}
    assert agent.close_calls == 1
    assert agent.stream_finalized is True



@pytest.mark.asyncio
async def test_client_disconnect_lets_close_finish():
    agent = SlowCloseAgent([StreamEvent.text(str(i)) for i in range(50)] + [StreamEvent.done()])
    response = StreamingResponse(stream_ndjson(agent, "hi"), media_type=NDJSON_MEDIA_TYPE)
    first_body = asyncio.Event()
    bodies = []

    async def receive():
        await first_body.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body" and message.get("body"):
            bodies.append(message["body"])
            first_body.set()

    scope = {"type": "http", "asgi": {"spec_version": "2.0"}}
    await asyncio.wait_for(response(scope, receive, send), timeout=5)

    assert json.loads(bodies[0]) == {"type": "text", "content": "0"}
    assert len(bodies) < 51
    assert agent.close_calls == 1
    assert agent.close_finished == 1
