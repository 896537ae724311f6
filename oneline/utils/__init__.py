"""
Common utilities package for the OneLine timeline service.

Logging setup, retry/backoff policy for upstream calls, and date helpers
for sorting and filtering timeline events. Only the logger is re-exported
here; the other modules depend on the settings object and are imported
directly.
"""

from oneline.utils.logger import cleanup_old_logs, setup_logger

__all__ = [
    "setup_logger",
    "cleanup_old_logs",
]
