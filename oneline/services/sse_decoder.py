"""
Decoding of the upstream Server-Sent-Events byte stream.

Bytes -> text (incremental UTF-8, multi-byte sequences split across chunks
are held back until complete) -> lines -> tagged StreamLine values.
"""

import codecs
import json
from typing import Any

from oneline.schemas import StreamLine
from oneline.utils.logger import setup_logger

logger = setup_logger("sse_decoder")

DATA_PREFIX = "data:"
EVENT_PREFIX = "event:"
DONE_TOKEN = "[DONE]"


class Utf8ChunkDecoder:
    """Incremental UTF-8 decoder; an incomplete trailing sequence is held over."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def decode(self, chunk: bytes) -> str:
        return self._decoder.decode(chunk, final=False)

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)


class LineBuffer:
    """Accumulates text and hands out complete lines."""

    def __init__(self):
        self._pending = ""

    def feed(self, text: str) -> list[str]:
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        rest, self._pending = self._pending, ""
        return [rest.rstrip("\r")] if rest else []


def extract_delta_content(payload: dict[str, Any]) -> str:
    """
    Incremental text of a chat-completions chunk.

    Reads ``choices[0].delta.content``, falling back to
    ``choices[0].message.content`` for services that send whole messages.
    """
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    for key in ("delta", "message"):
        part = first.get(key)
        if isinstance(part, dict) and isinstance(part.get("content"), str):
            if part["content"]:
                return part["content"]
    return ""


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


def decode_sse_line(line: str, event_type: str | None = None) -> StreamLine | None:
    """
    Decode one line of the event stream.

    Only the ``data:`` prefix and at most one space after it are removed, so
    a literal payload keeps its own leading and trailing whitespace.

    Returns None for lines that carry nothing to relay (comments, ``id:``,
    ``event:``, blank lines, empty data).
    """
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX) :]
    if data.startswith(" "):
        data = data[1:]
    token = data.strip()
    if not token:
        return None
    if token == DONE_TOKEN:
        return StreamLine(kind="done", raw=token)

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        # Not every upstream sends JSON; relay the text as-is
        logger.debug(f"Non-JSON data line relayed literally: {data[:100]!r}")
        if event_type == "error":
            return StreamLine(kind="error", content=token, raw=data)
        return StreamLine(kind="literal", content=data, raw=data)

    if not isinstance(payload, dict):
        return StreamLine(kind="literal", content=data, raw=data)

    if event_type == "error" or ("error" in payload and "choices" not in payload):
        return StreamLine(
            kind="error",
            content=_error_message(payload.get("error", payload)),
            payload=payload,
            raw=data,
        )

    return StreamLine(
        kind="json", content=extract_delta_content(payload), payload=payload, raw=data
    )


class SSEStreamDecoder:
    """
    Byte chunks in, StreamLine values out.

    One instance per upstream attempt. Tracks ``event:`` fields so a data
    line following ``event: error`` is reported as an error.
    """

    def __init__(self):
        self._text_decoder = Utf8ChunkDecoder()
        self._lines = LineBuffer()
        self._event_type: str | None = None
        self.lines_seen = 0

    def _decode_lines(self, lines: list[str]) -> list[StreamLine]:
        decoded: list[StreamLine] = []
        for line in lines:
            self.lines_seen += 1
            stripped = line.strip()
            if not stripped:
                # Blank line ends the current event
                self._event_type = None
                continue
            if stripped.startswith(EVENT_PREFIX):
                self._event_type = stripped[len(EVENT_PREFIX) :].strip() or None
                continue
            item = decode_sse_line(line, self._event_type)
            if item is not None:
                decoded.append(item)
        return decoded

    def feed(self, chunk: bytes) -> list[StreamLine]:
        return self._decode_lines(self._lines.feed(self._text_decoder.decode(chunk)))

    def flush(self) -> list[StreamLine]:
        tail = self._lines.feed(self._text_decoder.flush()) + self._lines.flush()
        return self._decode_lines(tail)
