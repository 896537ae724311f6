import httpx
from fastapi import Depends, HTTPException, Request, status

from oneline.services.search_grounding import SearxngClient
from oneline.services.stream_relay import StreamRelay
from oneline.services.timeline_orchestrator import TimelineOrchestratorService
from oneline.utils.logger import setup_logger

logger = setup_logger("dependencies")


def get_http_client(request: Request) -> httpx.AsyncClient:
    """FastAPI dependency to get the shared upstream HTTP client."""
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        logger.critical(
            "HTTP client dependency requested, but client is not available. "
            "This indicates the application lifespan did not run."
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream relay is not available.",
        )
    return client


def get_stream_relay(
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> StreamRelay:
    return StreamRelay(http_client)


def get_search_client(
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> SearxngClient:
    return SearxngClient(http_client)


def get_orchestrator(
    relay: StreamRelay = Depends(get_stream_relay),
    search_client: SearxngClient = Depends(get_search_client),
) -> TimelineOrchestratorService:
    return TimelineOrchestratorService(relay, search_client)
