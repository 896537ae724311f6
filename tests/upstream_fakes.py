"""
Scripted stand-ins for the upstream chat-completions service.
"""

import json
from collections.abc import AsyncIterator, Callable, Iterable

import httpx

UPSTREAM_URL = "https://upstream.test/v1/chat/completions"

Handler = Callable[[httpx.Request], httpx.Response]


class ChunkedBody(httpx.AsyncByteStream):
    """Response body delivered as the given byte chunks, one per read."""

    def __init__(self, chunks: Iterable[bytes], fail_after: Exception | None = None):
        self.chunks = list(chunks)
        self.fail_after = fail_after

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.fail_after is not None:
            raise self.fail_after


def sse_payload(content: str) -> str:
    return json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False)


def sse_body(contents: Iterable[str], done: bool = True) -> bytes:
    """Event-stream body with one ``data:`` event per content item."""
    lines = [f"data: {sse_payload(content)}\n\n" for content in contents]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def split_bytes(data: bytes, *offsets: int) -> list[bytes]:
    bounds = [0, *offsets, len(data)]
    return [data[a:b] for a, b in zip(bounds, bounds[1:], strict=False)]


def completion_body(content: str) -> dict:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }


def streaming(chunks: Iterable[bytes], fail_after: Exception | None = None):
    """Response factory for a 200 event stream made of ``chunks``."""
    chunks = list(chunks)

    def _respond() -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            stream=ChunkedBody(chunks, fail_after),
        )

    return _respond


def status(code: int, text: str = "upstream failure"):
    def _respond() -> httpx.Response:
        return httpx.Response(code, text=text)

    return _respond


def json_response(data: dict):
    def _respond() -> httpx.Response:
        return httpx.Response(200, json=data)

    return _respond


class RecordingSleep:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedUpstream:
    """
    MockTransport handler answering with the scripted responses in order.

    Each entry is a response factory or an exception to raise. The last
    entry is repeated once the script is exhausted.
    """

    def __init__(self, *responses: Callable[[], httpx.Response] | Exception):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response()

    @property
    def calls(self) -> int:
        return len(self.requests)

    def json_bodies(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]
