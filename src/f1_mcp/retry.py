"""Retry logic with exponential backoff for upstream F1 API calls."""
import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from f1_mcp.errors import UpstreamStatusError, UpstreamTransportError


logger = logging.getLogger(__name__)


# HTTP status codes that indicate transient errors
TRANSIENT_STATUS_CODES = frozenset([429, 502, 503, 504])

# Type variable for generic return type
T = TypeVar("T")


def is_transient_error(exception: Exception) -> bool:
    """
    Check if an exception indicates a transient error that should be retried.

    Args:
        exception: The exception to check

    Returns:
        True for transport failures and 429/502/503/504 responses
    """
    if isinstance(exception, UpstreamTransportError):
        return True
    if isinstance(exception, UpstreamStatusError):
        return exception.status in TRANSIENT_STATUS_CODES
    return False


def is_rate_limit_error(exception: Exception) -> bool:
    """Check if an exception is an upstream 429."""
    return isinstance(exception, UpstreamStatusError) and exception.status == 429


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    jitter: bool = True,
) -> float:
    """
    Calculate the backoff delay for a retry attempt using exponential backoff.

    Args:
        attempt: The current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Whether to add random jitter to prevent thundering herd

    Returns:
        Delay in seconds before the next retry
    """
    delay = min(base_delay * (2 ** attempt), max_delay)

    # Randomize between 0.5x and 1.5x the delay
    if jitter:
        delay = delay * (0.5 + random.random())

    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: Callable[[Exception], bool] | None = None,
    **kwargs,
) -> T:
    """
    Execute an async function with bounded retry.

    Unlike a generic retry wrapper, the last exception is re-raised as-is
    once retries are exhausted, so callers still see the upstream status.

    Args:
        func: The async function to call
        *args: Positional arguments to pass to func
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds between retries
        max_delay: Maximum delay in seconds
        retry_on: Predicate deciding whether an exception is retried.
                  Defaults to is_transient_error.
        **kwargs: Keyword arguments to pass to func

    Returns:
        The result of the function call
    """
    should_retry = retry_on or is_transient_error

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e) or attempt >= max_retries:
                raise

            delay = calculate_backoff(attempt, base_delay, max_delay)
            error_type = "Rate limit" if is_rate_limit_error(e) else "Transient error"
            logger.info(
                f"{error_type} (attempt {attempt + 1}/{max_retries + 1}): "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected retry exhaustion")

