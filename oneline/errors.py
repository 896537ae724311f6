"""
Error taxonomy for upstream generation requests.

Configuration problems are fatal and surfaced immediately. HTTP and network
failures are retried by the stream relay and only reach callers once every
attempt has been used, wrapped in ``RetriesExhaustedError``.
"""

import asyncio

import httpx

from oneline.schemas import ErrorDetails

MAX_ERROR_BODY_CHARS = 2000


class OneLineError(Exception):
    """Base class for every error raised by the generation pipeline."""


class ConfigurationError(OneLineError):
    """Upstream endpoint or credential missing; never retried."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UpstreamHttpError(OneLineError):
    """The upstream service answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", reason: str | None = None):
        self.status_code = status_code
        self.body = (body or "")[:MAX_ERROR_BODY_CHARS]
        self.reason = reason
        super().__init__(f"API returned {status_code}: {self.body}")


class NetworkError(OneLineError):
    """Connection reset, DNS failure, read error or deadline expiry."""

    def __init__(self, message: str, is_timeout: bool = False):
        super().__init__(message)
        self.message = message
        self.is_timeout = is_timeout


class UpstreamResponseError(OneLineError):
    """
    The upstream answered 2xx but the body was unusable, or it reported an
    error inside an already open event stream.
    """


class RetriesExhaustedError(OneLineError):
    """Terminal failure: every attempt failed. Keeps the last error."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Upstream request failed after {attempts} attempt(s): {last_error}"
        )


def to_pipeline_error(exc: BaseException) -> BaseException:
    """
    Translate low-level httpx/asyncio failures into the pipeline taxonomy.

    Errors that already belong to the taxonomy, and cancellations, are
    returned unchanged.
    """
    if isinstance(exc, OneLineError | asyncio.CancelledError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return UpstreamHttpError(
            response.status_code, response.text, response.reason_phrase
        )
    if isinstance(exc, httpx.TimeoutException | TimeoutError):
        return NetworkError(str(exc) or "Upstream request timed out", is_timeout=True)
    if isinstance(exc, httpx.TransportError | OSError):
        return NetworkError(str(exc) or type(exc).__name__)
    return exc


def _failure_title(attempts: int | None) -> str:
    if attempts and attempts > 1:
        return "API request failed after multiple attempts"
    return "API request failed"


def error_details_from_exception(exc: BaseException) -> ErrorDetails:
    """Build the user-facing error payload. Never includes credentials."""
    attempts = None
    cause = exc
    if isinstance(exc, RetriesExhaustedError):
        attempts = exc.attempts
        cause = exc.last_error or exc

    if isinstance(cause, ConfigurationError):
        return ErrorDetails(
            error="Upstream configuration missing",
            message=cause.message,
            status=cause.status_code,
            kind="configuration",
        )
    if isinstance(cause, UpstreamHttpError):
        return ErrorDetails(
            error=_failure_title(attempts),
            message=str(cause),
            status=cause.status_code,
            status_text=cause.reason,
            data=cause.body or None,
            kind="upstream_http",
            attempts=attempts,
        )
    if isinstance(cause, NetworkError):
        return ErrorDetails(
            error=_failure_title(attempts),
            message=cause.message,
            request="Request was made but no response was received",
            timeout=cause.is_timeout,
            kind="network",
            attempts=attempts,
        )
    return ErrorDetails(
        error="API request failed",
        message=str(cause) or type(cause).__name__,
        kind="network",
        attempts=attempts,
    )


def http_status_for_error(details: ErrorDetails) -> int:
    """Outer HTTP status for a structured error."""
    if details.kind == "configuration":
        return details.status or 400
    return 500
