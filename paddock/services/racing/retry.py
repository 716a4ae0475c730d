"""
Retry utilities with exponential backoff and jitter.
"""
import asyncio
import random
import logging
from typing import Awaitable, Callable, TypeVar

from paddock.exceptions import ExternalAPIError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_terminal(error: BaseException) -> bool:
    """Errors another attempt cannot fix: rejected keys, schema mismatches, bad local input."""
    if isinstance(error, ValidationError):
        return True
    if isinstance(error, ExternalAPIError):
        return not error.retryable
    return False


def backoff_delay(attempt: int, base_delay: float) -> float:
    """
    Delay before the attempt following ``attempt`` (1-based).

    Formula: base_delay * 2^(attempt-1) * jitter, jitter uniform in [0.5, 1.5)
    """
    jitter = 0.5 + random.random()
    return base_delay * (2 ** (attempt - 1)) * jitter


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Retry an async operation with exponential backoff and jitter.

    Args:
        operation: Callable that returns a fresh coroutine per attempt
        max_attempts: Maximum number of attempts (default 3)
        base_delay: Base delay in seconds (default 2.0)
        sleep: Coroutine function used to wait between attempts

    Returns:
        Result from the first successful attempt

    Raises:
        The terminal error immediately, or the last error once attempts run out

    Example:
        cards = await with_retry(lambda: source.list_racecards(), max_attempts=3)
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if is_terminal(e):
                logger.warning(f"Attempt {attempt} failed with a terminal error, not retrying: {str(e)[:100]}")
                raise

            if attempt >= max_attempts:
                logger.error(f"All {max_attempts} attempts failed: {str(e)[:100]}")
                raise

            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed, retrying in {delay:.2f}s: {str(e)[:100]}"
            )
            await sleep(delay)
