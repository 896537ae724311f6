from oneline.dependencies.relay import (
    get_http_client,
    get_orchestrator,
    get_search_client,
    get_stream_relay,
)

__all__ = [
    "get_http_client",
    "get_stream_relay",
    "get_search_client",
    "get_orchestrator",
]
