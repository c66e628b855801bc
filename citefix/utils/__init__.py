"""Utils module for CiteFix."""

from citefix.utils.logger import get_logger, setup_logging, LogContext

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
]
