"""
Tests for the stream relay: retries, backoff, delivery policy and cancellation.
"""

import asyncio

import httpx
import pytest
from upstream_fakes import (
    UPSTREAM_URL,
    ScriptedUpstream,
    completion_body,
    json_response,
    split_bytes,
    sse_body,
    status,
    streaming,
)

from oneline.errors import RetriesExhaustedError, UpstreamHttpError
from oneline.schemas import RelayChunk, TimelineStreamUpdate, UpstreamConfig
from oneline.services.stream_relay import StreamSession
from oneline.utils.retry_utils import BackoffPolicy

CONFIG = UpstreamConfig(endpoint=UPSTREAM_URL, model="test-model", api_key="sk-secret-key")
PAYLOAD = {"model": "test-model", "messages": [{"role": "user", "content": "hi"}]}

TIMELINE_TEXT = (
    "===SUMMARY===\nShort note\n\n===EVENTS===\n--E1--\nDate: 2023-01-01\n"
    "Title: A\nDescription: d\nPeople: X(lead,#fff)\nSource: S(http://s)\n\n"
)


class Collector:
    def __init__(self):
        self.items: list = []

    async def __call__(self, item) -> None:
        self.items.append(item)

    def kinds(self) -> list[str]:
        return [item.kind for item in self.items]

    def text(self) -> str:
        return "".join(item.text for item in self.items if item.kind == "content")


@pytest.mark.asyncio
async def test_permanent_failure_makes_exactly_max_attempts(make_relay, recording_sleep):
    upstream = ScriptedUpstream(status(500, "boom"))
    relay = make_relay(upstream)
    collector = Collector()

    session = await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 3
    assert session.attempts == 3
    assert recording_sleep.delays == [1.0, 2.0]
    assert recording_sleep.delays == sorted(recording_sleep.delays)
    assert collector.kinds() == ["error"]
    error = collector.items[-1].error
    assert error.kind == "upstream_http"
    assert error.status == 500
    assert error.data == "boom"
    assert error.attempts == 3
    assert error.error == "API request failed after multiple attempts"


@pytest.mark.asyncio
async def test_failure_then_success_delivers_once(make_relay, recording_sleep):
    upstream = ScriptedUpstream(
        status(500), streaming([sse_body(["Hello", ", ", "world"])])
    )
    relay = make_relay(upstream)
    collector = Collector()

    session = await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 2
    assert recording_sleep.delays == [1.0]
    assert collector.kinds() == ["content", "content", "content", "done"]
    assert collector.text() == "Hello, world"
    assert session.buffer == "Hello, world"


@pytest.mark.asyncio
async def test_request_carries_credentials_and_stream_flag(make_relay):
    upstream = ScriptedUpstream(streaming([sse_body(["x"])]))
    relay = make_relay(upstream)

    await relay.stream(CONFIG, PAYLOAD, Collector())

    request = upstream.requests[0]
    assert request.headers["Authorization"] == "Bearer sk-secret-key"
    assert upstream.json_bodies()[0]["stream"] is True


@pytest.mark.asyncio
async def test_hold_mode_never_duplicates_after_mid_stream_failure(make_relay):
    body = sse_body(["partial ", "answer"], done=False)
    upstream = ScriptedUpstream(
        streaming([body], fail_after=httpx.ReadError("connection reset")),
        streaming([sse_body(["full ", "answer"])]),
    )
    relay = make_relay(upstream, hold_until_complete=True)
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 2
    assert collector.text() == "full answer"
    assert collector.kinds()[-1] == "done"


@pytest.mark.asyncio
async def test_live_mode_failure_after_delivery_is_terminal(make_relay, recording_sleep):
    body = sse_body(["partial "], done=False)
    upstream = ScriptedUpstream(
        streaming([body], fail_after=httpx.ReadError("connection reset")),
        streaming([sse_body(["never sent"])]),
    )
    relay = make_relay(upstream, hold_until_complete=False)
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 1
    assert recording_sleep.delays == []
    assert collector.kinds() == ["content", "error"]
    assert collector.text() == "partial "
    assert collector.items[-1].error.kind == "network"


@pytest.mark.asyncio
async def test_live_mode_retries_while_nothing_was_delivered(make_relay):
    upstream = ScriptedUpstream(status(503), streaming([sse_body(["ok"])]))
    relay = make_relay(upstream, hold_until_complete=False)
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 2
    assert collector.kinds() == ["content", "done"]


@pytest.mark.asyncio
async def test_chunk_boundaries_inside_multibyte_characters(make_relay):
    data = sse_body(["时间线", "🚢 港口"])
    # Offsets chosen to fall inside the UTF-8 sequences of the payload
    chunks = split_bytes(data, 43, 46, 101, 102)
    upstream = ScriptedUpstream(streaming(chunks))
    relay = make_relay(upstream)
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert collector.text() == "时间线🚢 港口"


@pytest.mark.asyncio
async def test_in_stream_error_event_is_retried(make_relay):
    upstream = ScriptedUpstream(
        streaming([b'data: {"error": {"message": "overloaded"}}\n\n']),
        streaming([sse_body(["recovered"])]),
    )
    relay = make_relay(upstream)
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 2
    assert collector.text() == "recovered"


@pytest.mark.asyncio
async def test_connection_errors_become_network_error_chunk(make_relay):
    upstream = ScriptedUpstream(httpx.ConnectError("connection refused"))
    relay = make_relay(upstream)
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert upstream.calls == 3
    error = collector.items[-1].error
    assert error.kind == "network"
    assert error.timeout is False
    assert "sk-secret-key" not in error.model_dump_json()


class StalledBody(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b'data: {"choices": [{"delta": {"content": "slow"}}]}\n\n'
        await asyncio.sleep(10)
        yield b"data: [DONE]\n\n"


@pytest.mark.asyncio
async def test_attempt_timeout_is_reported_as_timeout(make_relay):
    upstream = ScriptedUpstream(lambda: httpx.Response(200, stream=StalledBody()))
    relay = make_relay(upstream, attempt_timeout=0.05, policy=BackoffPolicy(max_attempts=1))
    collector = Collector()

    await relay.stream(CONFIG, PAYLOAD, collector)

    assert collector.kinds() == ["error"]
    assert collector.items[0].error.timeout is True


@pytest.mark.asyncio
async def test_cancellation_during_backoff_is_not_retried(make_relay):
    sleeping = asyncio.Event()

    async def blocking_sleep(delay: float) -> None:
        sleeping.set()
        await asyncio.Event().wait()

    upstream = ScriptedUpstream(status(500))
    relay = make_relay(upstream, sleep=blocking_sleep)
    collector = Collector()

    task = asyncio.create_task(relay.stream(CONFIG, PAYLOAD, collector))
    await sleeping.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert upstream.calls == 1
    assert collector.items == []


@pytest.mark.asyncio
async def test_cancellation_during_read_is_not_retried(make_relay, recording_sleep):
    upstream = ScriptedUpstream(lambda: httpx.Response(200, stream=StalledBody()))
    relay = make_relay(upstream, attempt_timeout=30.0, hold_until_complete=False)
    received = asyncio.Event()

    async def on_chunk(chunk: RelayChunk) -> None:
        received.set()

    task = asyncio.create_task(relay.stream(CONFIG, PAYLOAD, on_chunk))
    await received.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert upstream.calls == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_buffered_complete_retries_then_returns_json(make_relay):
    upstream = ScriptedUpstream(status(502), json_response(completion_body("hello")))
    relay = make_relay(upstream)

    data = await relay.complete(CONFIG, PAYLOAD)

    assert data["choices"][0]["message"]["content"] == "hello"
    assert upstream.calls == 2
    assert upstream.json_bodies()[1]["stream"] is False


@pytest.mark.asyncio
async def test_buffered_exhaustion_raises_with_last_error(make_relay):
    upstream = ScriptedUpstream(status(503, "unavailable"))
    relay = make_relay(upstream)
    session = StreamSession()

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await relay.complete_text(CONFIG, PAYLOAD, session)

    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, UpstreamHttpError)
    assert exc_info.value.last_error.status_code == 503
    assert session.attempts == 3


@pytest.mark.asyncio
async def test_buffered_missing_content_is_retried(make_relay):
    upstream = ScriptedUpstream(
        json_response({"choices": []}), json_response(completion_body("text"))
    )
    relay = make_relay(upstream)

    assert await relay.complete_text(CONFIG, PAYLOAD) == "text"
    assert upstream.calls == 2


@pytest.mark.asyncio
async def test_stream_timeline_emits_each_event_once(make_relay):
    pieces = [TIMELINE_TEXT[i : i + 7] for i in range(0, len(TIMELINE_TEXT), 7)]
    upstream = ScriptedUpstream(streaming([sse_body(pieces)]))
    relay = make_relay(upstream)
    updates: list[TimelineStreamUpdate] = []

    async def on_update(update: TimelineStreamUpdate) -> None:
        updates.append(update)

    result = await relay.stream_timeline(CONFIG, PAYLOAD, on_update)

    deltas = [update.delta for update in updates if update.kind == "delta"]
    summaries = [delta.summary for delta in deltas if delta.summary is not None]
    event_ids = [event.id for delta in deltas for event in delta.new_events]
    assert summaries == ["Short note"]
    assert event_ids == ["event-0"]
    assert updates[-1].kind == "done"
    assert result.summary == "Short note"
    assert result.events[0].source_url == "http://s"


@pytest.mark.asyncio
async def test_stream_timeline_failure_returns_none(make_relay):
    upstream = ScriptedUpstream(status(500))
    relay = make_relay(upstream)
    updates: list[TimelineStreamUpdate] = []

    async def on_update(update: TimelineStreamUpdate) -> None:
        updates.append(update)

    assert await relay.stream_timeline(CONFIG, PAYLOAD, on_update) is None
    assert [update.kind for update in updates] == ["error"]

