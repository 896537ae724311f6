"""
Progress callback utilities for timeline generation.

Lets callers follow the stages of a request (search, generation, parsing)
without affecting it: a failing callback is logged and ignored.
"""

from collections.abc import Awaitable, Callable
from typing import Literal

from oneline.utils.logger import setup_logger

logger = setup_logger("process_callback")

ProgressStatus = Literal["pending", "completed", "error"]
ProgressFunc = Callable[[str, ProgressStatus], Awaitable[None]]


class ProgressCallback:
    """
    Fan-out of progress messages to any number of async callbacks.
    """

    def __init__(self, callbacks: list[ProgressFunc] = None):
        self.callbacks = callbacks or []

    async def report(self, message: str, status: ProgressStatus = "pending"):
        logger.debug(f"Progress [{status}]: {message}")
        for callback in self.callbacks:
            try:
                await callback(message, status)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}", exc_info=False)
