#!/usr/bin/env python3

"""
Main application entry point for the OneLine timeline generation service.

Architecture: FastAPI application relaying to an OpenAI-compatible chat-completions upstream.
Key Features: Lifecycle management of the shared HTTP client, log cleanup, CORS configuration.
"""

import asyncio
import sys

# Add this block to switch asyncio event loop policy on Windows
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from oneline import __version__
from oneline.api.http import router as http_router
from oneline.config import settings
from oneline.utils.logger import cleanup_old_logs, setup_logger

logger = setup_logger("main")


def create_http_client() -> httpx.AsyncClient:
    # The per-attempt deadline is enforced by the relay, so the transport
    # timeout only bounds connection setup and idle reads.
    timeout = httpx.Timeout(
        settings.upstream_attempt_timeout_seconds, connect=10.0
    )
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Own the shared upstream HTTP client for the lifetime of the application.
    """
    logger.info("Application startup...")
    cleanup_old_logs()

    if not getattr(app.state, "http_client", None):
        app.state.http_client = create_http_client()
        app.state.owns_http_client = True
    logger.info(
        f"Upstream relay ready (server-side config: "
        f"{settings.has_server_upstream_config}, model: {settings.api_model})"
    )

    logger.info("OneLine API startup successful.")
    yield

    logger.info("OneLine API shutdown...")
    if getattr(app.state, "owns_http_client", False):
        await app.state.http_client.aclose()
        app.state.http_client = None
        app.state.owns_http_client = False
    logger.info("Shutdown complete.")


def create_app(http_client: httpx.AsyncClient | None = None):
    app = FastAPI(title="OneLine API", version=__version__, lifespan=lifespan)
    # An injected client (tests) is used as is and left open on shutdown
    app.state.http_client = http_client
    app.state.owns_http_client = False

    app.include_router(http_router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    return app


app = create_app()


def main():
    """
    Start the FastAPI application with uvicorn.
    """
    port = int(settings.server_port)
    host = settings.server_host

    logger.info(f"Starting OneLine API server on {host}:{port}")

    try:
        uvicorn.run(
            "main:app" if settings.server_workers > 1 else app,
            host=host,
            port=port,
            workers=settings.server_workers,
        )
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
