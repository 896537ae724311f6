from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from oneline.config import settings

DEFAULT_PERSON_ROLE = "Participant"
DEFAULT_SOURCE_NAME = "Unspecified source"


# ===========================================
# TIMELINE DATA
# ===========================================


class Person(BaseModel):
    name: str = Field(..., min_length=1, description="Participant name, trimmed")
    role: str = Field(default=DEFAULT_PERSON_ROLE)
    color: str = Field(..., min_length=1, description="Colour token, e.g. '#1f77b4'")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Person name must not be blank")
        return v


class TimelineEvent(BaseModel):
    """
    One record of the generated timeline.

    ``id`` follows record order in the source text (``event-0``,
    ``event-1``, ...), not arrival time, so re-parsing a longer buffer
    yields the same id for the same record.
    """

    id: str
    date: str = ""
    title: str = ""
    description: str = ""
    people: list[Person] = Field(default_factory=list)
    source: str = DEFAULT_SOURCE_NAME
    source_url: str | None = Field(default=None, alias="sourceUrl")

    model_config = ConfigDict(populate_by_name=True)


class ParseResult(BaseModel):
    summary: str = ""
    events: list[TimelineEvent] = Field(default_factory=list)


class TimelineDelta(BaseModel):
    """What changed between two successive parses of a growing buffer."""

    new_events: list[TimelineEvent] = Field(default_factory=list)
    summary: str | None = Field(
        default=None, description="New summary text, None when unchanged"
    )

    @property
    def is_empty(self) -> bool:
        return not self.new_events and self.summary is None


# ===========================================
# CONFIGURATION RECORDS
# ===========================================


class SearxngConfig(BaseModel):
    enabled: bool = False
    url: str | None = None
    categories: str = "general"
    language: str = "zh"
    time_range: str = Field(default="year", alias="timeRange")
    engines: str | None = None
    num_results: int = Field(default=20, ge=1, le=100, alias="numResults")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def from_settings(cls) -> "SearxngConfig":
        return cls(
            enabled=settings.searxng_enabled,
            url=settings.searxng_url,
            categories=settings.searxng_categories,
            language=settings.searxng_language,
            time_range=settings.searxng_time_range,
            num_results=settings.searxng_num_results,
        )


class UpstreamConfig(BaseModel):
    """Immutable per-request upstream configuration."""

    endpoint: str
    model: str
    api_key: str
    searxng: SearxngConfig | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def masked_key(self) -> str:
        return self.api_key[:5] + "..." if self.api_key else "None"


# ===========================================
# SEARCH GROUNDING
# ===========================================


class SearchResultItem(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""
    published_date: str | None = Field(default=None, alias="publishedDate")
    category: str | None = None
    engine: str | None = None
    engines: list[str] = Field(default_factory=list)
    from_query: str | None = Field(default=None, alias="fromQuery")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SearchResult(BaseModel):
    query: str
    results: list[SearchResultItem] = Field(default_factory=list)


# ===========================================
# UPSTREAM STREAM LINES
# ===========================================


class StreamLine(BaseModel):
    """
    Tagged result of decoding one line of the upstream event stream.

    ``json``: payload decoded as JSON, ``content`` holds the extracted delta.
    ``literal``: payload was not JSON, ``content`` is the raw payload.
    ``error``: JSON payload carrying an ``error`` member.
    ``done``: the literal termination token.
    """

    kind: Literal["json", "literal", "error", "done"]
    content: str = ""
    payload: dict[str, Any] | None = None
    raw: str = ""


# ===========================================
# ERRORS
# ===========================================


class ErrorDetails(BaseModel):
    error: str
    message: str | None = None
    status: int | None = None
    status_text: str | None = Field(default=None, serialization_alias="statusText")
    data: str | None = None
    request: str | None = None
    timeout: bool | None = None
    kind: Literal["configuration", "upstream_http", "network"] = "network"
    attempts: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ===========================================
# API REQUESTS
# ===========================================


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRelayRequest(BaseModel):
    """Body of the low-level relay endpoint."""

    messages: list[ChatMessage] | None = None
    query: str | None = None
    model: str | None = None
    endpoint: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")
    stream: bool = False
    temperature: float | None = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("messages")
    @classmethod
    def messages_not_empty(cls, v: list[ChatMessage] | None) -> list[ChatMessage] | None:
        if v is not None and not v:
            raise ValueError("messages must not be empty")
        return v


class DateFilter(BaseModel):
    option: Literal["all", "last7days", "last30days", "last90days", "custom"] = "all"
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True)


class TimelineRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    model: str | None = None
    endpoint: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")
    stream: bool = False
    searxng: SearxngConfig | None = None
    date_filter: DateFilter | None = Field(default=None, alias="dateFilter")

    model_config = ConfigDict(populate_by_name=True)


class EventDetailsRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    event: TimelineEvent
    model: str | None = None
    endpoint: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")
    stream: bool = False
    searxng: SearxngConfig | None = None

    model_config = ConfigDict(populate_by_name=True)


class TimelineOutcome(BaseModel):
    """Result at the orchestrator boundary: either a parse result or an error."""

    result: ParseResult | None = None
    error: ErrorDetails | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DetailsOutcome(BaseModel):
    content: str = ""
    error: ErrorDetails | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ===========================================
# RELAY OUTPUT
# ===========================================


class RelayChunk(BaseModel):
    """
    One item handed to a streaming consumer.

    A stream always ends with exactly one ``done`` or ``error`` chunk.
    """

    kind: Literal["content", "done", "error"]
    text: str = ""
    line: StreamLine | None = None
    error: ErrorDetails | None = None


class TimelineStreamUpdate(BaseModel):
    """Structured streaming item: newly closed events/summary, or the end."""

    kind: Literal["delta", "done", "error"]
    delta: TimelineDelta | None = None
    result: ParseResult | None = None
    error: ErrorDetails | None = None
