"""
Tests for SearXNG search grounding.
"""

import httpx
import pytest

from oneline.prompts import NO_SEARCH_RESULTS_TEXT
from oneline.schemas import SearchResult, SearchResultItem, SearxngConfig
from oneline.services.search_grounding import (
    MAX_RESULTS_IN_PROMPT,
    SearxngClient,
    format_search_results_for_llm,
)

CONFIG = SearxngConfig(enabled=True, url="https://search.test/", num_results=2, engines="bing")


def _client(handler) -> SearxngClient:
    return SearxngClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), timeout=1.0)


def _item(index: int) -> dict:
    return {"title": f"Result {index}", "url": f"https://r.example/{index}", "content": "c"}


@pytest.mark.asyncio
async def test_search_sends_query_parameters_and_truncates():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"results": [_item(i) for i in range(5)]})

    result = await _client(handler).search("port strike", CONFIG)

    assert [item.title for item in result.results] == ["Result 0", "Result 1"]
    request = seen[0]
    assert request.url.path == "/search"
    assert request.url.params["q"] == "port strike"
    assert request.url.params["format"] == "json"
    assert request.url.params["engines"] == "bing"


@pytest.mark.asyncio
async def test_bare_list_response_is_accepted():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[_item(1), "junk"])

    result = await _client(handler).search("q", CONFIG)
    assert [item.url for item in result.results] == ["https://r.example/1"]


@pytest.mark.asyncio
async def test_unexpected_shape_yields_empty_result():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"answer": 42})

    result = await _client(handler).search("q", CONFIG)
    assert result.results == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="error"),
        httpx.Response(200, text="<html>not json</html>"),
    ],
)
async def test_failures_yield_none(response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    assert await _client(handler).search("q", CONFIG) is None


@pytest.mark.asyncio
async def test_disabled_search_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await _client(handler).search("q", SearxngConfig(enabled=False)) is None


def test_format_without_results():
    assert format_search_results_for_llm(None) == NO_SEARCH_RESULTS_TEXT
    assert format_search_results_for_llm(SearchResult(query="q")) == NO_SEARCH_RESULTS_TEXT


def test_format_lists_results_with_metadata():
    result = SearchResult(
        query="ports",
        results=[
            SearchResultItem(
                title="Strike ends",
                url="https://news.example/1",
                content="Workers return.",
                published_date="2024-10-04",
                engines=["bing", "duckduckgo"],
                from_query="port strike",
            )
        ],
    )
    text = format_search_results_for_llm(result)
    assert '[1] Strike ends (from query: "port strike")' in text
    assert "Source: https://news.example/1" in text
    assert "Date: 2024-10-04" in text
    assert "Engine: bing, duckduckgo" in text
    assert "Snippet: Workers return." in text


def test_format_caps_number_of_results():
    result = SearchResult(
        query="q",
        results=[SearchResultItem.model_validate(_item(i)) for i in range(30)],
    )
    text = format_search_results_for_llm(result)
    assert f"[{MAX_RESULTS_IN_PROMPT}] " in text
    assert f"[{MAX_RESULTS_IN_PROMPT + 1}] " not in text
