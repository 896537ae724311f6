"""
Timeline Orchestrator Service for coordinating end-to-end timeline generation.

Architecture: Resolves the upstream configuration, grounds the prompt in
search results, and drives the stream relay in buffered or structured
streaming mode.
Key Features: Sentinel-based server configuration, optional SearXNG
grounding, progress reporting, date filtering of the final result, and
errors returned as structured outcomes instead of exceptions.
"""

from typing import Any

from oneline.config import ENV_CONFIG_SENTINELS, settings
from oneline.errors import ConfigurationError, OneLineError, error_details_from_exception
from oneline.prompts import (
    EVENT_DETAILS_SYSTEM_PROMPT,
    EVENT_DETAILS_USER_PROMPT_TEMPLATE,
    TIMELINE_SYSTEM_PROMPT,
    TIMELINE_USER_PROMPT_TEMPLATE,
)
from oneline.schemas import (
    ChatRelayRequest,
    DetailsOutcome,
    EventDetailsRequest,
    RelayChunk,
    SearxngConfig,
    TimelineEvent,
    TimelineOutcome,
    TimelineRequest,
    TimelineStreamUpdate,
    UpstreamConfig,
)
from oneline.services.process_callback import ProgressCallback
from oneline.services.search_grounding import (
    SearxngClient,
    format_search_results_for_llm,
)
from oneline.services.stream_relay import (
    ChunkCallback,
    StreamRelay,
    StreamSession,
    UpdateCallback,
)
from oneline.services.timeline_parser import parse_timeline_text
from oneline.utils.date_filter import filter_events_by_date
from oneline.utils.logger import setup_logger

logger = setup_logger("timeline_orchestrator")

# Request fields that configure the relay and are never forwarded upstream
_RELAY_ONLY_FIELDS = {"endpoint", "api_key", "query"}


def uses_env_config(*values: str | None) -> bool:
    return any(value in ENV_CONFIG_SENTINELS for value in values if value)


def resolve_config(
    model: str | None,
    endpoint: str | None,
    api_key: str | None,
    searxng: SearxngConfig | None = None,
) -> UpstreamConfig:
    """
    Build the immutable upstream configuration for one request.

    The sentinel in any of ``model``, ``endpoint`` or ``api_key`` selects the
    server-side configuration for all three.

    Raises:
        ConfigurationError: 500 when the server configuration is requested
            but missing, 400 when the request itself lacks endpoint or key.
    """
    if uses_env_config(model, endpoint, api_key):
        if not settings.has_server_upstream_config:
            raise ConfigurationError(
                "Server-side API configuration is missing, please configure the "
                "API parameters manually",
                status_code=500,
            )
        return UpstreamConfig(
            endpoint=settings.api_endpoint,
            model=settings.api_model,
            api_key=settings.api_key,
            searxng=searxng,
        )

    if not endpoint or not api_key:
        raise ConfigurationError(
            "API key or endpoint not configured in request", status_code=400
        )
    return UpstreamConfig(
        endpoint=endpoint,
        model=model or settings.api_model,
        api_key=api_key,
        searxng=searxng,
    )


def format_event_text(event: TimelineEvent) -> str:
    parts = [event.title]
    if event.date:
        parts.append(f"(Date: {event.date})")
    if event.description:
        parts.append(event.description)
    return " ".join(part for part in parts if part)


class TimelineOrchestratorService:
    """Orchestrates the timeline generation pipeline for one request at a time."""

    def __init__(self, relay: StreamRelay, search_client: SearxngClient | None = None):
        self.relay = relay
        self.search_client = search_client

    # ===========================================
    # PROMPT ASSEMBLY
    # ===========================================

    async def _grounding_message(
        self,
        query: str,
        searxng: SearxngConfig | None,
        progress: ProgressCallback,
    ) -> dict[str, str] | None:
        if self.search_client is None or searxng is None or not searxng.enabled:
            return None

        await progress.report(f"Searching the web for '{query}'...")
        result = await self.search_client.search(query, searxng)
        if result is None:
            await progress.report("Web search unavailable, continuing without it", "error")
            return None
        await progress.report(
            f"Found {len(result.results)} search results", "completed"
        )
        return {"role": "system", "content": format_search_results_for_llm(result)}

    async def build_messages(
        self,
        system_prompt: str,
        user_content: str,
        search_query: str,
        searxng: SearxngConfig | None,
        progress: ProgressCallback,
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": system_prompt}]
        grounding = await self._grounding_message(search_query, searxng, progress)
        if grounding:
            messages.append(grounding)
        messages.append({"role": "user", "content": user_content})
        return messages

    @staticmethod
    def build_payload(
        config: UpstreamConfig, messages: list[dict[str, str]]
    ) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": messages,
            "temperature": settings.upstream_temperature,
        }

    @staticmethod
    def _effective_searxng(searxng: SearxngConfig | None) -> SearxngConfig | None:
        return searxng if searxng is not None else SearxngConfig.from_settings()

    # ===========================================
    # TIMELINE GENERATION
    # ===========================================

    async def generate_timeline(
        self,
        request: TimelineRequest,
        on_update: UpdateCallback | None = None,
        progress: ProgressCallback | None = None,
        session: StreamSession | None = None,
    ) -> TimelineOutcome:
        """
        Generate a timeline for ``request.query``.

        When ``on_update`` is given the request is streamed and every newly
        closed event or summary is forwarded as it arrives. The returned
        outcome always carries the final parse result or a structured error.
        """
        progress = progress or ProgressCallback()
        session = session or StreamSession()
        log_prefix = f"[Timeline {session.request_id}]"

        try:
            config = resolve_config(
                request.model,
                request.endpoint,
                request.api_key,
                self._effective_searxng(request.searxng),
            )
        except ConfigurationError as e:
            logger.error(f"{log_prefix} Configuration error: {e.message}")
            await progress.report(e.message, "error")
            return TimelineOutcome(error=error_details_from_exception(e))

        logger.info(
            f"{log_prefix} Starting timeline generation for query '{request.query}' "
            f"(model: {config.model}, stream: {on_update is not None})"
        )
        await progress.report(f"Starting timeline generation for '{request.query}'")

        messages = await self.build_messages(
            TIMELINE_SYSTEM_PROMPT,
            TIMELINE_USER_PROMPT_TEMPLATE.format(query=request.query),
            request.query,
            config.searxng,
            progress,
        )
        payload = self.build_payload(config, messages)

        await progress.report("Generating timeline...")
        if on_update is not None:
            outcome = await self._stream_timeline(config, payload, on_update, session)
        else:
            outcome = await self._complete_timeline(config, payload, session)

        if not outcome.ok:
            await progress.report(outcome.error.error, "error")
            return outcome

        if request.date_filter is not None:
            outcome.result.events = filter_events_by_date(
                outcome.result.events, request.date_filter
            )

        logger.info(
            f"{log_prefix} Timeline generation finished with "
            f"{len(outcome.result.events)} events in {session.elapsed:.2f}s"
        )
        await progress.report(
            f"Timeline ready with {len(outcome.result.events)} events", "completed"
        )
        return outcome

    async def _complete_timeline(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        session: StreamSession,
    ) -> TimelineOutcome:
        try:
            text = await self.relay.complete_text(config, payload, session)
        except OneLineError as e:
            return TimelineOutcome(error=error_details_from_exception(e))
        return TimelineOutcome(result=parse_timeline_text(text, complete=True))

    async def _stream_timeline(
        self,
        config: UpstreamConfig,
        payload: dict[str, Any],
        on_update: UpdateCallback,
        session: StreamSession,
    ) -> TimelineOutcome:
        error = None

        async def forward(update: TimelineStreamUpdate) -> None:
            nonlocal error
            if update.kind == "error":
                error = update.error
            await on_update(update)

        result = await self.relay.stream_timeline(config, payload, forward, session)
        if result is None:
            return TimelineOutcome(error=error)
        return TimelineOutcome(result=result)

    # ===========================================
    # EVENT DETAILS
    # ===========================================

    async def fetch_event_details(
        self,
        request: EventDetailsRequest,
        on_chunk: ChunkCallback | None = None,
        progress: ProgressCallback | None = None,
        session: StreamSession | None = None,
    ) -> DetailsOutcome:
        """Free-text analysis of a single event; streamed raw when ``on_chunk`` is set."""
        progress = progress or ProgressCallback()
        session = session or StreamSession()
        log_prefix = f"[Details {session.request_id}]"

        try:
            config = resolve_config(
                request.model,
                request.endpoint,
                request.api_key,
                self._effective_searxng(request.searxng),
            )
        except ConfigurationError as e:
            logger.error(f"{log_prefix} Configuration error: {e.message}")
            await progress.report(e.message, "error")
            return DetailsOutcome(error=error_details_from_exception(e))

        event_text = format_event_text(request.event)
        logger.info(f"{log_prefix} Fetching details for event '{request.event.title}'")
        await progress.report(f"Analysing event '{request.event.title}'...")

        search_query = f"{request.query} {request.event.title}".strip()
        messages = await self.build_messages(
            EVENT_DETAILS_SYSTEM_PROMPT,
            EVENT_DETAILS_USER_PROMPT_TEMPLATE.format(event_text=event_text),
            search_query,
            config.searxng,
            progress,
        )
        payload = self.build_payload(config, messages)

        if on_chunk is not None:
            error = None

            async def forward(chunk: RelayChunk) -> None:
                nonlocal error
                if chunk.kind == "error":
                    error = chunk.error
                await on_chunk(chunk)

            await self.relay.stream(config, payload, forward, session)
            outcome = DetailsOutcome(content=session.buffer, error=error)
        else:
            try:
                content = await self.relay.complete_text(config, payload, session)
                outcome = DetailsOutcome(content=content)
            except OneLineError as e:
                outcome = DetailsOutcome(error=error_details_from_exception(e))

        if outcome.ok:
            await progress.report("Event analysis finished", "completed")
        else:
            await progress.report(outcome.error.error, "error")
        return outcome

    # ===========================================
    # RAW CHAT RELAY
    # ===========================================

    def prepare_chat_relay(
        self, request: ChatRelayRequest
    ) -> tuple[UpstreamConfig, dict[str, Any]]:
        """
        Resolve configuration and the upstream body for the raw relay endpoint.

        Unknown request fields are forwarded unchanged. Credentials and the
        endpoint never are.

        Raises:
            ConfigurationError: see ``resolve_config``.
        """
        config = resolve_config(request.model, request.endpoint, request.api_key)

        payload = request.model_dump(exclude=_RELAY_ONLY_FIELDS, exclude_none=True)
        if request.messages is None:
            if not request.query:
                raise ConfigurationError("Request must carry messages or a query")
            payload["messages"] = [
                {"role": "system", "content": TIMELINE_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": TIMELINE_USER_PROMPT_TEMPLATE.format(query=request.query),
                },
            ]
        payload["model"] = config.model
        payload.setdefault("temperature", settings.upstream_temperature)
        payload["stream"] = request.stream
        return config, payload

