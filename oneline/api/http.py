"""
HTTP API Routes - relay and timeline generation endpoints.

Handles the raw chat relay, structured timeline generation and single-event
analysis, each in buffered (one JSON body) or streaming (one message per
line) mode.
"""

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from oneline.dependencies import get_orchestrator, get_stream_relay
from oneline.errors import (
    ConfigurationError,
    OneLineError,
    error_details_from_exception,
    http_status_for_error,
)
from oneline.schemas import (
    ChatRelayRequest,
    ErrorDetails,
    EventDetailsRequest,
    RelayChunk,
    TimelineRequest,
    TimelineStreamUpdate,
)
from oneline.services.stream_relay import StreamRelay, StreamSession
from oneline.services.timeline_orchestrator import (
    TimelineOrchestratorService,
    resolve_config,
)
from oneline.utils.date_filter import filter_events_by_date
from oneline.utils.logger import setup_logger

logger = setup_logger("api")

router = APIRouter(prefix="/api")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

Emit = Callable[[str], Awaitable[None]]


def _json_line(message: dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False) + "\n"


def _error_response(details: ErrorDetails) -> JSONResponse:
    return JSONResponse(
        status_code=http_status_for_error(details), content=details.to_payload()
    )


def _check_config(body: TimelineRequest | EventDetailsRequest) -> JSONResponse | None:
    """Reject a bad upstream configuration with its status before streaming starts."""
    try:
        resolve_config(body.model, body.endpoint, body.api_key)
    except ConfigurationError as e:
        logger.error(f"Request rejected: {e.message}")
        return _error_response(error_details_from_exception(e))
    return None


async def _bridge(
    producer: Callable[[Emit], Awaitable[None]], request_id: str
) -> AsyncIterator[str]:
    """
    Run a callback-driven producer as a task and yield what it emits.

    Closing the generator (client disconnect) cancels the producer, which
    aborts any in-flight upstream read or backoff sleep.
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def emit(text: str) -> None:
        await queue.put(text)

    async def run() -> None:
        try:
            await producer(emit)
        except Exception as e:
            logger.error(f"[Stream {request_id}] Unexpected error: {e}", exc_info=True)
            details = ErrorDetails(error="Internal server error", message=str(e))
            await queue.put(_json_line({"type": "error", **details.to_payload()}))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item
        await task
    finally:
        if not task.done():
            logger.info(f"[Stream {request_id}] Client disconnected, cancelling relay")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


def _streaming_response(
    producer: Callable[[Emit], Awaitable[None]],
    request_id: str,
    media_type: str = "application/x-ndjson",
) -> StreamingResponse:
    return StreamingResponse(
        _bridge(producer, request_id), media_type=media_type, headers=STREAM_HEADERS
    )


@router.get("/")
async def read_root():
    """API health check endpoint."""
    return {"message": "OneLine API is running!"}


@router.post("/chat")
async def chat_relay(
    body: ChatRelayRequest,
    relay: StreamRelay = Depends(get_stream_relay),
    orchestrator: TimelineOrchestratorService = Depends(get_orchestrator),
):
    """
    Relay a chat-completions request to the upstream service.

    Buffered mode returns the upstream JSON unchanged. Streaming mode returns
    one line per upstream content item (its JSON payload, or the literal
    text when the payload was not JSON) and a final JSON error line when
    every attempt failed.
    """
    try:
        config, payload = orchestrator.prepare_chat_relay(body)
    except ConfigurationError as e:
        logger.error(f"Chat relay rejected: {e.message}")
        return _error_response(error_details_from_exception(e))

    session = StreamSession()
    if not body.stream:
        try:
            data = await relay.complete(config, payload, session)
        except OneLineError as e:
            return _error_response(error_details_from_exception(e))
        return JSONResponse(content=data)

    async def produce(emit: Emit) -> None:
        async def on_chunk(chunk: RelayChunk) -> None:
            if chunk.kind == "content":
                line = chunk.line
                if line is not None and line.kind == "json" and line.payload is not None:
                    await emit(_json_line(line.payload))
                else:
                    await emit(chunk.text + "\n")
            elif chunk.kind == "error":
                await emit(_json_line(chunk.error.to_payload()))

        await relay.stream(config, payload, on_chunk, session)

    return _streaming_response(produce, session.request_id, "text/event-stream")


@router.post("/timeline")
async def generate_timeline(
    body: TimelineRequest,
    orchestrator: TimelineOrchestratorService = Depends(get_orchestrator),
):
    """
    Generate a structured timeline for a query.

    Streaming messages are ``{"type": "summary" | "event" | "done" | "error"}``;
    each event is sent at most once.
    """
    if (rejection := _check_config(body)) is not None:
        return rejection

    session = StreamSession()
    if not body.stream:
        outcome = await orchestrator.generate_timeline(body, session=session)
        if not outcome.ok:
            return _error_response(outcome.error)
        return JSONResponse(content=outcome.result.model_dump(by_alias=True))

    async def produce(emit: Emit) -> None:
        async def on_update(update: TimelineStreamUpdate) -> None:
            if update.kind != "delta":
                return
            delta = update.delta
            if delta.summary is not None:
                await emit(_json_line({"type": "summary", "content": delta.summary}))
            events = delta.new_events
            if body.date_filter is not None:
                events = filter_events_by_date(events, body.date_filter)
            for event in events:
                await emit(
                    _json_line({"type": "event", "event": event.model_dump(by_alias=True)})
                )

        outcome = await orchestrator.generate_timeline(
            body, on_update=on_update, session=session
        )
        if outcome.ok:
            await emit(
                _json_line({"type": "done", "result": outcome.result.model_dump(by_alias=True)})
            )
        else:
            await emit(_json_line({"type": "error", **outcome.error.to_payload()}))

    return _streaming_response(produce, session.request_id)


@router.post("/event-details")
async def event_details(
    body: EventDetailsRequest,
    orchestrator: TimelineOrchestratorService = Depends(get_orchestrator),
):
    """Free-text background analysis of a single timeline event."""
    if (rejection := _check_config(body)) is not None:
        return rejection

    session = StreamSession()
    if not body.stream:
        outcome = await orchestrator.fetch_event_details(body, session=session)
        if not outcome.ok:
            return _error_response(outcome.error)
        return {"content": outcome.content}

    async def produce(emit: Emit) -> None:
        async def on_chunk(chunk: RelayChunk) -> None:
            if chunk.kind == "content" and chunk.text:
                await emit(_json_line({"type": "details", "content": chunk.text}))

        outcome = await orchestrator.fetch_event_details(
            body, on_chunk=on_chunk, session=session
        )
        if outcome.ok:
            await emit(_json_line({"type": "done"}))
        else:
            await emit(_json_line({"type": "error", **outcome.error.to_payload()}))

    return _streaming_response(produce, session.request_id)
