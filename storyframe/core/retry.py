"""
Retry utilities with exponential backoff.

Provides a functional retry wrapper and a bounded polling combinator for
external image-backend calls. Sleeps are injectable so tests can run the
backoff schedule without waiting.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from storyframe.core.logging_config import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: Tuple[float, float] = (0.5, 1.5)
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        Exception,
    )


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_delay(
    attempt: int,
    config: RetryConfig
) -> float:
    """
    Calculate delay before next retry attempt.

    Uses exponential backoff with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds before next attempt
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= random.uniform(*config.jitter_range)

    return delay


async def retry_async_call(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    sleep: Optional[SleepFunc] = None,
    **kwargs: Any
) -> T:
    """
    Retry an async function call with exponential backoff.

    Exceptions outside ``config.retryable_exceptions`` propagate immediately.

    Args:
        func: Async function to call
        *args: Positional arguments for the function
        config: Retry configuration (uses defaults if not provided)
        on_retry: Optional callback called with (exception, attempt) before each wait
        sleep: Awaitable sleep used between attempts (asyncio.sleep by default)
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call

    Example:
        result = await retry_async_call(
            adapter.generate,
            request,
            config=IMAGE_GENERATION_RETRY_CONFIG
        )
    """
    config = config or DEFAULT_RETRY_CONFIG
    sleep = sleep or asyncio.sleep
    last_exception: Optional[Exception] = None

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            last_exception = e

            if attempt < config.max_retries:
                delay = calculate_delay(attempt, config)
                logger.warning(
                    f"Attempt {attempt + 1}/{config.max_retries + 1} failed: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )

                if on_retry:
                    on_retry(e, attempt)

                await sleep(delay)
            else:
                logger.error(
                    f"All {config.max_retries + 1} attempts failed. "
                    f"Last error: {e}"
                )

    if last_exception:
        raise last_exception

    raise RuntimeError("Retry logic failed unexpectedly")


def async_retry(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None
) -> Callable:
    """
    Decorator form of :func:`retry_async_call`.

    Example:
        @async_retry(RetryConfig(max_retries=2, base_delay=0.5))
        async def fetch_status():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async_call(func, *args, config=config, on_retry=on_retry, **kwargs)
        return wrapper
    return decorator


# =============================================================================
# POLLING
# =============================================================================

class PollExhaustedError(Exception):
    """Raised by poll_until when the attempt budget runs out."""

    def __init__(self, attempts: int, last_value: Any = None):
        super().__init__(f"No terminal state after {attempts} attempts")
        self.attempts = attempts
        self.last_value = last_value


@dataclass
class PollConfig:
    """Configuration for job status polling."""
    interval: float = 3.0
    max_attempts: int = 60


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    config: Optional[PollConfig] = None,
    sleep: Optional[SleepFunc] = None,
    on_poll: Optional[Callable[[T, int], None]] = None
) -> T:
    """
    Call ``fetch`` until ``is_terminal`` accepts its result.

    The first fetch happens after one interval, matching how job backends
    need a moment before the status endpoint reports anything useful.

    Args:
        fetch: Async callable returning the current job state
        is_terminal: Predicate deciding whether polling can stop
        config: Interval and attempt budget
        sleep: Awaitable sleep (asyncio.sleep by default)
        on_poll: Optional progress callback called with (value, attempt)

    Returns:
        The first terminal value

    Raises:
        PollExhaustedError: If ``max_attempts`` fetches never return a terminal value
    """
    config = config or PollConfig()
    sleep = sleep or asyncio.sleep
    value: Any = None

    for attempt in range(1, config.max_attempts + 1):
        await sleep(config.interval)
        value = await fetch()
        if on_poll:
            on_poll(value, attempt)
        if is_terminal(value):
            return value
        logger.debug(f"Poll {attempt}/{config.max_attempts}: not finished")

    raise PollExhaustedError(config.max_attempts, value)


# Schedule for image backends: three attempts, waits of 2s then 4s.
IMAGE_GENERATION_RETRY_CONFIG = RetryConfig(
    max_retries=2,
    base_delay=2.0,
    max_delay=30.0,
    exponential_base=2.0,
    jitter=False
)
