"""
Parser for the sectioned text format the model is asked to answer in.

Architecture: Stateless. Every call receives the full text accumulated so
far and returns a fresh ParseResult; incremental delivery is obtained by
diffing successive results (see event_diff).
Key Features: Tolerant field matching, participant/source extraction,
closed-record policy so partially received records are never emitted.

Format::

    ===SUMMARY===            (or ===总结===)
    free text
    ===EVENTS===             (or ===事件列表===)
    --E1--                   (or --事件1--, --Event 1--)
    Date: 2023-01-01         (日期：)
    Title: ...               (标题：)
    Description: ...         (描述：), may span several lines
    People: A(role,#hex);B   (相关方/人物：)
    Source: Name (https://...)   (来源：)
"""

import hashlib
import random
import re
from typing import NamedTuple
from urllib.parse import urlsplit

from oneline.schemas import (
    DEFAULT_PERSON_ROLE,
    DEFAULT_SOURCE_NAME,
    ParseResult,
    Person,
    TimelineEvent,
)
from oneline.utils.date_filter import sort_events
from oneline.utils.logger import setup_logger

logger = setup_logger("timeline_parser")

FALLBACK_SOURCE_LINK_TEXT = "View source"

_SUMMARY_SECTION_NAMES = {"summary", "总结", "概要"}
_EVENTS_SECTION_NAMES = {"events", "event list", "timeline", "事件列表", "事件"}

_SECTION_MARKER_RE = re.compile(
    r"^[ \t]*(?:\*\*)?={2,}[ \t]*(?P<name>[^=\n]+?)[ \t]*={2,}(?:\*\*)?[ \t]*$",
    re.MULTILINE,
)
_RECORD_MARKER_RE = re.compile(
    r"^[ \t]*(?:\*\*)?-{2,}[ \t]*(?:事件|event|e)[ \t]*\d+[ \t]*-{2,}(?:\*\*)?[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)

_FIELD_LABELS = {
    "date": ("日期", "date"),
    "title": ("标题", "title"),
    "description": ("描述", "description"),
    "people": ("相关方/人物", "相关方", "人物", "participants", "people"),
    "source": ("来源", "sources", "source"),
}
_LABEL_TO_FIELD = {
    label.casefold(): field for field, labels in _FIELD_LABELS.items() for label in labels
}
_LABEL_ALTERNATION = "|".join(
    re.escape(label) for label in sorted(_LABEL_TO_FIELD, key=len, reverse=True)
)
_LABEL_RE = re.compile(
    r"^[ \t]*(?:[-*•][ \t]+)?(?:\*\*)?(?P<label>"
    + _LABEL_ALTERNATION
    + r")(?:\*\*)?[ \t]*[:：](?:\*\*)?[ \t]*",
    re.MULTILINE | re.IGNORECASE,
)

_PEOPLE_SEPARATOR_RE = re.compile(r"[;；\n]")
_PERSON_RE = re.compile(r"^(?P<name>[^(（]*)[(（](?P<inner>[^)）]*)[)）]?")
_COLOR_RE = re.compile(
    r"^(?:#(?:[0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})|[a-zA-Z]{3,20})$"
)

_URL_RE = re.compile(r"https?://[^\s)）\]>，。；、]+")
_LABELLED_URL_RE = re.compile(
    r"^(?P<name>.+?)[ \t]*[(（]+[ \t]*(?P<url>https?://[^\s)）]+)[ \t]*[)）]+"
)
_URL_TRAILING_JUNK = ")]>.,;:'\""
_NAME_TRAILING_JUNK_RE = re.compile(r"[\s:：\-—(（\[]+$")


class _Span(NamedTuple):
    start: int
    end: int
    closed: bool


# ===========================================
# PARTICIPANTS
# ===========================================


def fallback_color(name: str, rng: random.Random | None = None) -> str:
    """
    Colour for a participant whose entry carries none.

    Drawn from ``rng`` when one is given, otherwise derived from the name so
    parsing stays a pure function of its input.
    """
    if rng is not None:
        value = rng.randrange(0x1000000)
    else:
        value = int(hashlib.md5(name.encode("utf-8")).hexdigest()[:6], 16)
    return f"#{value:06x}"


def _split_role_and_color(inner: str) -> tuple[str, str | None]:
    inner = inner.replace("，", ",").strip()
    if not inner:
        return "", None
    if "," in inner:
        role, color = inner.rsplit(",", 1)
        color = color.strip()
        return role.strip(), color if _COLOR_RE.match(color) else None
    if inner.startswith("#") and _COLOR_RE.match(inner):
        return "", inner
    return inner, None


def parse_people(text: str, color_rng: random.Random | None = None) -> list[Person]:
    """
    Parse ``name(role,color);name(role,color)`` into Person objects.

    Entries without the parenthesised part, or with a malformed colour,
    still produce a Person with a default role and a fallback colour.
    """
    people: list[Person] = []
    for entry in _PEOPLE_SEPARATOR_RE.split(text or ""):
        entry = entry.strip().lstrip("-*•").strip()
        if not entry:
            continue

        match = _PERSON_RE.match(entry)
        if match:
            name = match.group("name").strip()
            role, color = _split_role_and_color(match.group("inner"))
        else:
            name, role, color = entry, "", None

        if not name:
            logger.debug(f"Skipping participant entry without a name: {entry!r}")
            continue

        people.append(
            Person(
                name=name,
                role=role or DEFAULT_PERSON_ROLE,
                color=color or fallback_color(name, color_rng),
            )
        )
    return people


# ===========================================
# SOURCES
# ===========================================


def _clean_url(url: str) -> str:
    return url.rstrip(_URL_TRAILING_JUNK)


def _domain_of(url: str) -> str:
    hostname = urlsplit(url).hostname or ""
    return hostname.removeprefix("www.") or FALLBACK_SOURCE_LINK_TEXT


def extract_source(raw: str) -> tuple[str, str | None]:
    """
    Split a source field into (display name, url).

    Tried in order: ``Name (url)``; a bare URL anywhere, named by the text
    before it or else by its domain; the whole field as a name without URL.
    """
    raw = (raw or "").strip()
    if not raw:
        return DEFAULT_SOURCE_NAME, None

    labelled = _LABELLED_URL_RE.match(raw)
    if labelled:
        name = _NAME_TRAILING_JUNK_RE.sub("", labelled.group("name")).strip("[] \t")
        url = _clean_url(labelled.group("url").strip())
        return name or _domain_of(url), url

    bare = _URL_RE.search(raw)
    if bare:
        url = _clean_url(bare.group(0))
        before = _NAME_TRAILING_JUNK_RE.sub("", raw[: bare.start()]).strip()
        return before or _domain_of(url), url

    return raw, None


# ===========================================
# RECORDS
# ===========================================


def _section_kind(name: str) -> str | None:
    normalized = name.strip("* \t").casefold()
    if normalized in _SUMMARY_SECTION_NAMES:
        return "summary"
    if normalized in _EVENTS_SECTION_NAMES:
        return "events"
    return None


def _locate_sections(text: str, complete: bool) -> tuple[_Span | None, _Span | None]:
    """
    Find the summary and event-list sections.

    A section runs to the next summary or event-list marker and is closed
    once one exists, or when the stream has completed. Other ``==X==`` lines
    are ordinary text.
    """
    markers = [
        (marker, kind)
        for marker in _SECTION_MARKER_RE.finditer(text)
        if (kind := _section_kind(marker.group("name"))) is not None
    ]
    summary: _Span | None = None
    events: _Span | None = None

    for idx, (marker, kind) in enumerate(markers):
        has_next = idx + 1 < len(markers)
        end = markers[idx + 1][0].start() if has_next else len(text)
        span = _Span(marker.end(), end, has_next or complete)
        if kind == "summary" and summary is None:
            summary = span
        elif kind == "events" and events is None:
            events = span

    if events is None:
        # Tolerate answers that skip the event-list header
        first_record = _RECORD_MARKER_RE.search(text, summary.start if summary else 0)
        if first_record:
            later = [m for m, _ in markers if m.start() > first_record.start()]
            end = later[0].start() if later else len(text)
            events = _Span(first_record.start(), end, bool(later) or complete)
            if summary and summary.end > first_record.start():
                summary = _Span(summary.start, first_record.start(), True)

    return summary, events


def _iter_blocks(region: str, region_closed: bool):
    """Yield (block_text, closed) for each record of the event-list region."""
    markers = list(_RECORD_MARKER_RE.finditer(region))
    if not markers:
        yield region, region_closed
        return

    yield region[: markers[0].start()], True
    for idx, marker in enumerate(markers):
        has_next = idx + 1 < len(markers)
        end = markers[idx + 1].start() if has_next else len(region)
        yield region[marker.end() : end], has_next or region_closed


def _split_fields(block: str) -> dict[str, str]:
    """Map field name -> raw value. Values run until the next label."""
    matches = list(_LABEL_RE.finditer(block))
    fields: dict[str, str] = {}
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(block)
        field = _LABEL_TO_FIELD[match.group("label").casefold()]
        # First occurrence wins
        fields.setdefault(field, block[match.end() : end].strip())
    return fields


def _first_line(value: str) -> str:
    for line in value.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _build_event(
    fields: dict[str, str], index: int, color_rng: random.Random | None
) -> TimelineEvent:
    source, source_url = extract_source(fields.get("source", ""))
    return TimelineEvent(
        id=f"event-{index}",
        date=_first_line(fields.get("date", "")),
        title=" ".join(fields.get("title", "").split()),
        description=fields.get("description", ""),
        people=parse_people(fields.get("people", ""), color_rng),
        source=source,
        source_url=source_url,
    )


def parse_timeline_text(
    text: str,
    *,
    complete: bool = False,
    color_rng: random.Random | None = None,
) -> ParseResult:
    """
    Parse the full accumulated answer text into a ParseResult.

    Only closed records are returned: a record is closed by the next record
    marker, by a later section marker, or by ``complete=True`` once the
    stream has ended. The summary likewise stays empty until its section
    is closed. Malformed input degrades to defaults and never raises.

    Event ids follow record order in the text, so the same record keeps the
    same id while the buffer grows. The returned events are sorted by date.
    """
    if not text or not text.strip():
        return ParseResult()

    summary_span, events_span = _locate_sections(text, complete)

    summary = ""
    if summary_span and summary_span.closed:
        summary = text[summary_span.start : summary_span.end].strip()

    events: list[TimelineEvent] = []
    if events_span:
        region = text[events_span.start : events_span.end]
        index = 0
        for block, closed in _iter_blocks(region, events_span.closed):
            if not closed:
                break
            fields = _split_fields(block)
            if not fields:
                continue
            events.append(_build_event(fields, index, color_rng))
            index += 1

    return ParseResult(summary=summary, events=sort_events(events))
