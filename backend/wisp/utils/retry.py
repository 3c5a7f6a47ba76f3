"""Bounded retry and polling helpers shared by the provisioning stages."""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from wisp.utils.logger import logger

T = TypeVar("T")

AttemptFailureCallback = Callable[[int, BaseException], None]
Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(initial_delay: float, attempt: int, max_delay: Optional[float] = None) -> float:
    """
    Delay slept after the given failed attempt: ``initial_delay * 2^(attempt-1)``.

    Args:
        initial_delay: Delay after the first failed attempt, in seconds
        attempt: 1-based number of the attempt that just failed
        max_delay: Optional ceiling; None keeps the pure exponential law

    Returns:
        Seconds to sleep before the next attempt
    """
    delay = initial_delay * (2 ** (attempt - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    initial_delay: float,
    on_attempt_failure: Optional[AttemptFailureCallback] = None,
    *,
    max_delay: Optional[float] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run an async operation up to ``max_attempts`` times with exponential backoff.

    ``on_attempt_failure(attempt, error)`` is invoked for every failed attempt
    that will be retried; it is not invoked for the final, exhausting failure.
    On exhaustion the last error is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine function to run
        max_attempts: Total number of attempts (>= 1)
        initial_delay: Delay after the first failure, in seconds
        on_attempt_failure: Optional progress callback
        max_delay: Optional ceiling for a single delay
        sleep: Awaitable sleep function (injected by tests)

    Returns:
        The operation's result
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == max_attempts:
                raise
            delay = backoff_delay(initial_delay, attempt, max_delay)
            logger.warning(
                f"[RETRY] Attempt {attempt}/{max_attempts} failed: {e}; retrying in {delay:.1f}s"
            )
            if on_attempt_failure is not None:
                on_attempt_failure(attempt, e)
            await sleep(delay)
