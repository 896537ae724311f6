"""
Retry utilities for upstream generation requests with error classification.

Provides a bounded exponential backoff schedule and the retryable/fatal
classification used by the stream relay. Network errors, timeouts and
non-2xx upstream responses are transient; configuration errors and caller
cancellation never are.
"""

import asyncio
import errno
from collections.abc import Sequence

import httpx

from oneline.config import settings
from oneline.errors import (
    ConfigurationError,
    NetworkError,
    UpstreamHttpError,
    UpstreamResponseError,
)
from oneline.utils.logger import setup_logger

logger = setup_logger("retry_utils")

RETRYABLE_ERRNOS = {
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
}


def is_retryable_upstream_error(e: BaseException) -> bool:
    """
    Classify upstream errors for retry decisions.

    Cancellation requested by the caller is never retryable, whatever the
    error it surfaced as.
    """
    if isinstance(e, asyncio.CancelledError):
        return False
    if isinstance(e, ConfigurationError):
        return False
    if isinstance(e, UpstreamHttpError | NetworkError | UpstreamResponseError):
        return True
    if isinstance(e, httpx.HTTPStatusError | httpx.TransportError):
        return True
    if isinstance(e, TimeoutError):
        return True
    if isinstance(e, OSError) and e.errno in RETRYABLE_ERRNOS:
        logger.info(f"OSError errno {e.errno} detected as retryable.")
        return True
    return False


class BackoffPolicy:
    """
    Fixed backoff schedule bounded by a maximum attempt count.

    ``next_delay(attempt)`` returns the pause before the attempt following
    ``attempt`` (1-based): with delays ``[1, 2, 4]`` a failing first attempt
    waits 1s, a failing second attempt 2s. Attempts beyond the schedule use
    ``fallback_delay``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delays: Sequence[float] = (1.0, 2.0, 4.0),
        fallback_delay: float = 5.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delays = tuple(delays)
        self.fallback_delay = fallback_delay

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.upstream_max_attempts,
            delays=settings.upstream_retry_delays,
            fallback_delay=settings.upstream_fallback_retry_delay,
        )

    def next_delay(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if attempt <= len(self.delays):
            return self.delays[attempt - 1]
        return self.fallback_delay

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable_upstream_error(error)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """True when ``error`` on ``attempt`` warrants another attempt."""
        return attempt < self.max_attempts and self.is_retryable(error)

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(max_attempts={self.max_attempts}, "
            f"delays={list(self.delays)}, fallback_delay={self.fallback_delay})"
        )
