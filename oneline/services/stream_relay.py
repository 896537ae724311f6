"""
Stream Relay - owns the upstream connection lifecycle for one request.

Architecture: One shared httpx.AsyncClient, one StreamSession per call.
Key Features: Bounded retries with backoff, per-attempt wall-clock timeout,
incremental SSE decoding, retry-safe delivery to streaming consumers, and
structured streaming through the parser and diff tracker.

Retry-safe delivery: by default (``hold_until_complete``) the content of an
attempt is held back until that attempt has finished successfully, so a
retry can never repeat output a consumer has already seen. With it turned
off, content is delivered live and retries are only allowed while nothing
has been delivered yet; a failure after the first delivered byte is
terminal.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from oneline.config import settings
from oneline.errors import (
    OneLineError,
    RetriesExhaustedError,
    UpstreamHttpError,
    UpstreamResponseError,
    error_details_from_exception,
    to_pipeline_error,
)
from oneline.schemas import (
    ParseResult,
    RelayChunk,
    StreamLine,
    TimelineStreamUpdate,
    UpstreamConfig,
)
from oneline.services.event_diff import EventDiffTracker
from oneline.services.sse_decoder import SSEStreamDecoder
from oneline.services.timeline_parser import parse_timeline_text
from oneline.utils.logger import setup_logger
from oneline.utils.retry_utils import BackoffPolicy

logger = setup_logger("stream_relay")

ChunkCallback = Callable[[RelayChunk], Awaitable[None]]
UpdateCallback = Callable[[TimelineStreamUpdate], Awaitable[None]]
SleepFunc = Callable[[float], Awaitable[Any]]


class StreamSession:
    """
    Transient state of one relay call. Never shared between requests.
    """

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id or uuid.uuid4().hex[:8]
        self.buffer = ""
        self.attempts = 0
        self.last_error: BaseException | None = None
        self.tracker = EventDiffTracker()
        self.delivered_any = False
        self.chunks_delivered = 0
        self.started_at = time.perf_counter()

    @property
    def delivered_ids(self) -> set[str]:
        return self.tracker.delivered_ids

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started_at


class StreamRelay:
    """Relays chat-completion requests to the upstream service."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        policy: BackoffPolicy | None = None,
        attempt_timeout: float | None = None,
        hold_until_complete: bool | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.http_client = http_client
        self.policy = policy or BackoffPolicy.from_settings()
        self.attempt_timeout = (
            attempt_timeout
            if attempt_timeout is not None
            else settings.upstream_attempt_timeout_seconds
        )
        self.hold_until_complete = (
            hold_until_complete
            if hold_until_complete is not None
            else settings.stream_hold_until_complete
        )
        self._sleep = sleep

    @staticmethod
    def _headers(config: UpstreamConfig) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }

    # ===========================================
    # RETRY LOOP
    # ===========================================

    async def _with_retries(
        self,
        session: StreamSession,
        attempt_fn: Callable[[], Awaitable[Any]],
        can_retry: Callable[[], bool] = lambda: True,
    ) -> Any:
        """
        Run ``attempt_fn`` until it succeeds or the policy gives up.

        Retryable failures are contained here. Once attempts are exhausted a
        RetriesExhaustedError carrying the last error is raised. Non-retryable
        errors propagate unchanged. Cancellation is never caught.
        """
        while True:
            session.attempts += 1
            attempt = session.attempts
            try:
                return await attempt_fn()
            except Exception as exc:
                error = to_pipeline_error(exc)
                session.last_error = error

                if not self.policy.is_retryable(error):
                    logger.error(
                        f"[Relay {session.request_id}] Non-retryable error on attempt "
                        f"{attempt}: {type(error).__name__}: {error}"
                    )
                    if error is exc:
                        raise
                    raise error from exc

                if not (self.policy.should_retry(attempt, error) and can_retry()):
                    logger.error(
                        f"[Relay {session.request_id}] Upstream request ultimately failed "
                        f"after {attempt} attempt(s) in {session.elapsed:.2f}s: "
                        f"{type(error).__name__}: {error}"
                    )
                    raise RetriesExhaustedError(attempt, error) from exc

                delay = self.policy.next_delay(attempt)
                logger.warning(
                    f"[Relay {session.request_id}] Upstream attempt {attempt}/"
                    f"{self.policy.max_attempts} failed due to {type(error).__name__}: "
                    f"{error}. Retrying in {delay:.2f}s..."
                )
                await self._sleep(delay)

    # ===========================================
    # BUFFERED MODE
    # ===========================================

    async def _post_once(
        self, config: UpstreamConfig, payload: dict[str, Any]
    ) -> dict[str, Any]:
        async with asyncio.timeout(self.attempt_timeout):
            response = await self.http_client.post(
                config.endpoint, json=payload, headers=self._headers(config)
            )
        if not response.is_success:
            raise UpstreamHttpError(
                response.status_code, response.text, response.reason_phrase
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamResponseError("Upstream returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise UpstreamResponseError("Upstream returned an unexpected JSON shape")
        return data

    async def complete(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        session: StreamSession | None = None,
    ) -> dict[str, Any]:
        """
        Buffered request; returns the upstream JSON response.

        Raises RetriesExhaustedError after the last failed attempt.
        """
        session = session or StreamSession()
        request_payload = {**payload, "stream": False}
        logger.info(
            f"[Relay {session.request_id}] Buffered request to {config.endpoint} "
            f"with model {config.model}, api_key: {config.masked_key}"
        )
        data = await self._with_retries(
            session, lambda: self._post_once(config, request_payload)
        )
        logger.info(
            f"[Relay {session.request_id}] Buffered request completed in "
            f"{session.elapsed:.4f}s after {session.attempts} attempt(s)"
        )
        return data

    async def complete_text(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        session: StreamSession | None = None,
    ) -> str:
        """Buffered request; returns ``choices[0].message.content``."""
        session = session or StreamSession()
        request_payload = {**payload, "stream": False}

        async def attempt() -> str:
            data = await self._post_once(config, request_payload)
            choices = data.get("choices") or []
            message = choices[0].get("message") if choices else None
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, str):
                raise UpstreamResponseError("Upstream response carries no message content")
            return content

        content = await self._with_retries(session, attempt)
        session.buffer = content
        logger.info(
            f"[Relay {session.request_id}] Buffered completion of {len(content)} chars "
            f"in {session.elapsed:.4f}s after {session.attempts} attempt(s)"
        )
        return content

    # ===========================================
    # STREAMING MODE
    # ===========================================

    async def _stream_once(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        sink: Callable[[StreamLine], Awaitable[None]],
        session: StreamSession,
    ) -> None:
        """One streaming attempt. Returns on the termination token or EOF."""
        decoder = SSEStreamDecoder()
        chunk_count = 0

        async def dispatch(lines: list[StreamLine]) -> bool:
            for line in lines:
                if line.kind == "done":
                    return True
                if line.kind == "error":
                    raise UpstreamResponseError(f"Stream error: {line.content}")
                await sink(line)
            return False

        async with asyncio.timeout(self.attempt_timeout):
            async with self.http_client.stream(
                "POST", config.endpoint, json=payload, headers=self._headers(config)
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    raise UpstreamHttpError(
                        response.status_code,
                        body.decode("utf-8", errors="replace"),
                        response.reason_phrase,
                    )

                async for raw in response.aiter_bytes():
                    chunk_count += 1
                    if chunk_count <= 3 or chunk_count % 10 == 0:
                        logger.debug(
                            f"[Relay {session.request_id}] Stream chunk {chunk_count}: "
                            f"{len(raw)} bytes"
                        )
                    if await dispatch(decoder.feed(raw)):
                        return
                await dispatch(decoder.flush())

    async def _deliver(
        self, session: StreamSession, line: StreamLine, on_chunk: ChunkCallback
    ) -> None:
        session.buffer += line.content
        session.delivered_any = True
        session.chunks_delivered += 1
        await on_chunk(RelayChunk(kind="content", text=line.content, line=line))

    async def stream(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        on_chunk: ChunkCallback,
        session: StreamSession | None = None,
    ) -> StreamSession:
        """
        Streaming request driving ``on_chunk`` per content item.

        The consumer always receives a final ``done`` or ``error`` chunk;
        exhausted retries are reported through that chunk, not raised.
        """
        session = session or StreamSession()
        request_payload = {**payload, "stream": True}
        hold = self.hold_until_complete

        logger.info(
            f"[Relay {session.request_id}] Streaming request to {config.endpoint} "
            f"with model {config.model}, api_key: {config.masked_key}, "
            f"hold_until_complete: {hold}"
        )

        async def attempt() -> list[StreamLine]:
            held: list[StreamLine] = []

            async def sink(line: StreamLine) -> None:
                if hold:
                    held.append(line)
                else:
                    await self._deliver(session, line, on_chunk)

            await self._stream_once(config, request_payload, sink, session)
            return held

        try:
            held = await self._with_retries(
                session, attempt, can_retry=lambda: not session.delivered_any
            )
        except OneLineError as exc:
            await on_chunk(RelayChunk(kind="error", error=error_details_from_exception(exc)))
            return session

        for line in held:
            await self._deliver(session, line, on_chunk)

        logger.info(
            f"[Relay {session.request_id}] Stream completed in {session.elapsed:.4f}s "
            f"after {session.attempts} attempt(s): {session.chunks_delivered} chunks, "
            f"{len(session.buffer)} chars"
        )
        await on_chunk(RelayChunk(kind="done"))
        return session

    async def stream_timeline(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        on_update: UpdateCallback,
        session: StreamSession | None = None,
    ) -> ParseResult | None:
        """
        Structured streaming: re-parse the whole buffer after every chunk and
        forward only newly closed events and summary changes.

        Returns the final ParseResult, or None when the request failed (the
        failure is reported to ``on_update`` as an ``error`` update).
        """
        session = session or StreamSession()
        final_result: ParseResult | None = None

        async def on_chunk(chunk: RelayChunk) -> None:
            nonlocal final_result
            if chunk.kind == "content":
                if not chunk.text:
                    return
                delta = session.tracker.update(parse_timeline_text(session.buffer))
                if not delta.is_empty:
                    await on_update(TimelineStreamUpdate(kind="delta", delta=delta))
            elif chunk.kind == "done":
                result = parse_timeline_text(session.buffer, complete=True)
                delta = session.tracker.update(result)
                if not delta.is_empty:
                    await on_update(TimelineStreamUpdate(kind="delta", delta=delta))
                final_result = result
                await on_update(TimelineStreamUpdate(kind="done", result=result))
            else:
                await on_update(TimelineStreamUpdate(kind="error", error=chunk.error))

        await self.stream(config, payload, on_chunk, session)
        return final_result
