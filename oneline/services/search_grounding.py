"""
SearXNG search grounding.

Fetches recent web results for a query and formats them as a text block
that is sent to the model as an auxiliary system message. Grounding is
optional: every failure is logged and yields None so the timeline request
can proceed without it.
"""

import time
from typing import Any

import httpx
from pydantic import ValidationError

from oneline.config import settings
from oneline.prompts import (
    NO_SEARCH_RESULTS_TEXT,
    SEARCH_RESULTS_GUIDANCE,
    SEARCH_RESULTS_HEADER_TEMPLATE,
)
from oneline.schemas import SearchResult, SearchResultItem, SearxngConfig
from oneline.utils.logger import setup_logger

logger = setup_logger("search_grounding")

MAX_RESULTS_IN_PROMPT = 20


def _adapt_results(query: str, data: Any) -> SearchResult:
    """Accept ``{"results": [...]}`` or a bare list; anything else is empty."""
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        raw_items = data["results"]
    elif isinstance(data, list):
        raw_items = data
    else:
        logger.warning(f"Unexpected SearXNG response shape: {type(data).__name__}")
        raw_items = []

    items: list[SearchResultItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        try:
            items.append(SearchResultItem.model_validate(raw))
        except ValidationError as e:
            logger.debug(f"Skipping malformed search result: {e}")
    return SearchResult(query=query, results=items)


class SearxngClient:
    """Thin SearXNG JSON API client on top of a shared httpx.AsyncClient."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: float | None = None):
        self.http_client = http_client
        self.timeout = timeout if timeout is not None else settings.searxng_timeout_seconds

    async def search(self, query: str, config: SearxngConfig) -> SearchResult | None:
        if not config.enabled or not config.url:
            logger.debug("SearXNG search disabled, skipping grounding step")
            return None

        params = {
            "q": query,
            "format": "json",
            "categories": config.categories,
            "language": config.language,
            "time_range": config.time_range,
        }
        if config.engines:
            params["engines"] = config.engines

        search_url = config.url.rstrip("/") + "/search"
        start_time = time.perf_counter()
        try:
            response = await self.http_client.get(
                search_url, params=params, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"SearXNG returned {e.response.status_code} for query '{query}': "
                f"{e.response.text[:200]}"
            )
            return None
        except (httpx.RequestError, ValueError) as e:
            logger.error(f"SearXNG request failed for query '{query}': {e}")
            return None

        result = _adapt_results(query, data)
        result.results = result.results[: config.num_results]
        logger.info(
            f"SearXNG search for '{query}' returned {len(result.results)} results "
            f"in {time.perf_counter() - start_time:.4f}s"
        )
        return result


def format_search_results_for_llm(result: SearchResult | None) -> str:
    """Render search results as the grounding-context message."""
    if not result or not result.results:
        return NO_SEARCH_RESULTS_TEXT

    parts = [SEARCH_RESULTS_HEADER_TEMPLATE.format(query=result.query)]
    for index, item in enumerate(result.results[:MAX_RESULTS_IN_PROMPT], 1):
        if item.from_query and item.from_query != result.query:
            parts.append(f'[{index}] {item.title} (from query: "{item.from_query}")\n')
        else:
            parts.append(f"[{index}] {item.title}\n")
        parts.append(f"Source: {item.url}\n")
        if item.published_date:
            parts.append(f"Date: {item.published_date}\n")
        if item.category:
            parts.append(f"Category: {item.category}\n")
        engine = item.engine or ", ".join(item.engines)
        if engine:
            parts.append(f"Engine: {engine}\n")
        parts.append(f"Snippet: {item.content}\n\n")

    parts.append(SEARCH_RESULTS_GUIDANCE)
    return "".join(parts)
