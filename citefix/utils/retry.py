"""
Resilience helpers for collaborator calls.

Provides a deadline helper, tenacity-based retry decorators and a small
error categorizer used when recording API call outcomes.
"""

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from citefix.pipeline.errors import (
    ParseFailure,
    PipelineError,
    StageTimeout,
    UpstreamFailure,
)
from citefix.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Transport-level failures worth another attempt
TRANSIENT_HTTP_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


# =============================================================================
# Timeouts
# =============================================================================

async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: Optional[float],
    operation: str,
) -> T:
    """Await ``awaitable`` under a deadline, raising ``StageTimeout`` on expiry."""
    if not timeout_seconds:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning("Operation timed out", operation=operation, timeout=timeout_seconds)
        raise StageTimeout(operation, timeout_seconds)


# =============================================================================
# Retry
# =============================================================================

def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple[type[Exception], ...] = TRANSIENT_HTTP_ERRORS,
):
    """Decorator retrying transient failures with exponential backoff."""
    def decorator(func: Callable):
        @wraps(func)
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            reraise=True,
        )
        async def wrapper(*args, **kwargs):
            return await func(*args, **kwargs)
        return wrapper
    return decorator


# =============================================================================
# Error Categorization
# =============================================================================

class ErrorHandler:
    """Maps exceptions onto short category strings for logs and call records."""

    @staticmethod
    def categorize_error(error: BaseException) -> str:
        if isinstance(error, (StageTimeout, asyncio.TimeoutError, httpx.TimeoutException)):
            return "TIMEOUT_ERROR"
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status == 429:
                return "RATE_LIMIT_ERROR"
            if status in (401, 403):
                return "API_KEY_ERROR"
            return "HTTP_ERROR"
        if isinstance(error, (httpx.NetworkError, ConnectionError)):
            return "NETWORK_ERROR"
        if isinstance(error, ParseFailure):
            return "PARSE_ERROR"
        if isinstance(error, UpstreamFailure):
            return "UPSTREAM_ERROR"
        if isinstance(error, (ValueError, TypeError)):
            return "VALIDATION_ERROR"

        err_str = str(error).lower()
        if "rate limit" in err_str:
            return "RATE_LIMIT_ERROR"
        if "timeout" in err_str or "timed out" in err_str:
            return "TIMEOUT_ERROR"
        if "api key" in err_str or "unauthorized" in err_str:
            return "API_KEY_ERROR"

        return "UNKNOWN_ERROR"

    @staticmethod
    def describe(error: BaseException) -> str:
        """Human-readable message, preferring a pipeline error's own text."""
        if isinstance(error, PipelineError):
            return error.message
        text = str(error)
        return text or error.__class__.__name__


def error_details(error: BaseException) -> dict[str, Any]:
    return {
        "category": ErrorHandler.categorize_error(error),
        "message": ErrorHandler.describe(error),
    }
