"""
This file contains shared fixtures and configuration for the test suite.

Pytest will automatically discover and use the fixtures defined in this file.

The upstream chat-completions service and SearXNG are never contacted: tests
script their responses with ``httpx.MockTransport`` (see upstream_fakes) and
inject a recording sleep so retry backoff runs instantly.
"""

import httpx
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from upstream_fakes import Handler, RecordingSleep

from oneline.config import settings
from oneline.dependencies import get_http_client, get_stream_relay
from oneline.services.stream_relay import StreamRelay
from oneline.utils.retry_utils import BackoffPolicy


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """
    Pin the settings that depend on the local environment.
    """
    monkeypatch.setattr(settings, "api_endpoint", None)
    monkeypatch.setattr(settings, "api_key", None)
    monkeypatch.setattr(settings, "api_model", "test-model")
    monkeypatch.setattr(settings, "searxng_enabled", False)
    monkeypatch.setattr(settings, "searxng_url", None)
    monkeypatch.setattr(settings, "stream_hold_until_complete", True)
    monkeypatch.setattr(settings, "upstream_max_attempts", 3)
    monkeypatch.setattr(settings, "upstream_retry_delays", [1.0, 2.0, 4.0])
    yield


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_relay(recording_sleep: RecordingSleep):
    """
    Build a StreamRelay whose HTTP client talks to the given handler.
    """

    def _make(handler: Handler, **kwargs) -> StreamRelay:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("policy", BackoffPolicy(max_attempts=3, delays=(1.0, 2.0, 4.0)))
        kwargs.setdefault("attempt_timeout", 5.0)
        kwargs.setdefault("sleep", recording_sleep)
        return StreamRelay(client, **kwargs)

    return _make


@pytest.fixture
def make_client(recording_sleep: RecordingSleep):
    """
    Create an application wired to a scripted upstream and return a test
    client for it. The TestClient handles the application's lifespan events.
    """
    clients: list[TestClient] = []

    def _make(handler: Handler) -> TestClient:
        # Import the factory function here to ensure a fresh app per test.
        from main import create_app

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        app: FastAPI = create_app(http_client=http_client)

        def relay_override(
            client: httpx.AsyncClient = Depends(get_http_client),
        ) -> StreamRelay:
            return StreamRelay(client, attempt_timeout=5.0, sleep=recording_sleep)

        app.dependency_overrides[get_stream_relay] = relay_override
        test_client = TestClient(app)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield _make

    for test_client in clients:
        test_client.__exit__(None, None, None)
