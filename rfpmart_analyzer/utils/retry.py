"""
Bounded retry with exponential backoff for async operations.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int = 3,
    base_delay: float = 1.0,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or ``attempts`` are used up.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        name: Operation name used in log messages
        attempts: Maximum number of attempts (at least 1)
        base_delay: Delay before the second attempt; doubles each retry
        timeout: Per-attempt timeout in seconds, None for no limit
        retry_on: Exception types that are worth retrying. A per-attempt
            timeout is always retryable.
        on_retry: Optional callback invoked with (attempt, error) before sleeping

    Returns:
        The operation's result.

    Raises:
        The last error once attempts are exhausted, or any error not listed in
        ``retry_on`` immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        started = time.monotonic()
        try:
            if timeout is not None:
                return await asyncio.wait_for(operation(), timeout=timeout)
            return await operation()
        except (asyncio.TimeoutError, *retry_on) as e:
            elapsed = time.monotonic() - started
            if attempt == attempts - 1:
                logger.error(f"{name} failed after {attempts} attempts: {e!r}")
                raise

            delay = base_delay * (2 ** attempt)  # Exponential backoff
            logger.warning(
                f"{name} attempt {attempt + 1}/{attempts} failed after {elapsed:.1f}s: {e!r}; "
                f"retrying in {delay:.1f}s"
            )
            if on_retry is not None:
                on_retry(attempt + 1, e)
            await asyncio.sleep(delay)

    raise RuntimeError(f"{name}: retry loop exited without a result")  # pragma: no cover
