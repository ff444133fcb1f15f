"""
Retry helpers with bounded attempts.

``simple_retry`` covers the synchronous cases (sink delivery), while
``retry_async`` is used by the persistence writer where each attempt is
also bounded by a timeout and spaced by exponential backoff.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def simple_retry(
    func: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 1.0,
    context: str = "operation"
) -> T:
    """
    Simple retry mechanism for basic operations.

    Args:
        func: Function to retry
        max_attempts: Maximum number of attempts
        delay: Delay between attempts in seconds
        context: Context description for error messages

    Returns:
        Result from func if successful

    Raises:
        Exception: Last exception if all attempts fail
    """
    last_exception = None

    for attempt in range(max_attempts):
        try:
            result = func()
            if attempt > 0:
                logger.info(f"Operation '{context}' succeeded on attempt {attempt + 1}")
            return result
        except Exception as e:
            last_exception = e
            if attempt < max_attempts - 1:
                logger.debug(f"Attempt {attempt + 1} failed for {context}: {e}")
                time.sleep(delay)
            else:
                logger.error(f"All {max_attempts} attempts failed for {context}: {e}")

    raise last_exception or Exception(f"All attempts failed for {context}")


def backoff_delay(attempt: int, base: float, cap: Optional[float] = None) -> float:
    """Exponential backoff delay for a zero-based attempt number."""
    delay = base * (2 ** attempt)
    if cap is not None:
        delay = min(delay, cap)
    return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    timeout: Optional[float] = None,
    context: str = "operation",
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_failure: Optional[Callable[[int, BaseException], Any]] = None,
) -> T:
    """
    Await ``operation`` until it succeeds or attempts run out.

    Each attempt is wrapped in ``asyncio.wait_for`` when ``timeout`` is
    given. Between attempts the coroutine sleeps ``backoff_base * 2**n``.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        max_attempts: Maximum number of attempts
        backoff_base: Base delay for exponential backoff in seconds
        timeout: Per-attempt timeout in seconds, None for no limit
        context: Context description for log messages
        should_retry: Predicate deciding whether an error is worth retrying
        on_failure: Called with (attempt_number, error) after each failed attempt

    Returns:
        The result of the first successful attempt

    Raises:
        The last error once attempts are exhausted or the error is not retryable
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            if timeout is not None:
                result = await asyncio.wait_for(operation(), timeout=timeout)
            else:
                result = await operation()
            if attempt > 0:
                logger.info(f"Operation '{context}' succeeded on attempt {attempt + 1}")
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if on_failure is not None:
                on_failure(attempt + 1, e)
            retryable = should_retry(e) if should_retry is not None else True
            if not retryable:
                logger.warning(f"Non-retryable failure in {context}: {e}")
                break
            if attempt < max_attempts - 1:
                delay = backoff_delay(attempt, backoff_base)
                logger.warning(
                    f"Attempt {attempt + 1}/{max_attempts} failed for {context}: {e!r}; "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"All {max_attempts} attempts failed for {context}: {e!r}")

    raise last_error or RuntimeError(f"All attempts failed for {context}")
