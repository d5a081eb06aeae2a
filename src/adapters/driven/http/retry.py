"""Backoff retry for outbound calls that are not webhook dispatches."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

import aiohttp

__all__ = ["retry", "RETRYABLE_ERRORS"]

logger = logging.getLogger(__name__)

# Transport failures worth another attempt
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientConnectorError,  # Connection refused, DNS failed
    aiohttp.ClientConnectionError,  # Connection dropped
    aiohttp.ClientOSError,  # OS-level network error
    aiohttp.ServerTimeoutError,  # Server timeout
    aiohttp.ClientPayloadError,  # Streaming error
)

T = TypeVar("T")
AsyncFn = Callable[..., Awaitable[T]]


def retry(
    times: int = 3,
    delay_sec: tuple[float, ...] = (0.2, 0.5, 1.0),
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
) -> Callable[[AsyncFn[T]], AsyncFn[T]]:
    """Retry an async call on transient errors with a fixed delay table.

    Webhook dispatches never go through this: a dispatch is exactly one
    request. It backs auxiliary traffic such as analytics delivery, where
    a repeated POST is harmless.

    Args:
        times: Total attempts (1 = no retry).
        delay_sec: Delay before each retry; the last entry repeats.
        retry_on: Exception types that trigger another attempt.

    Returns:
        Decorator preserving the wrapped function's signature.

    Example:
        @retry(times=3)
        async def _post(self, batch):
            ...
    """

    def decorator(func: AsyncFn[T]) -> AsyncFn[T]:
        name = getattr(func, "__qualname__", repr(func))

        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> T:
            for attempt in range(1, times + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == times:
                        logger.debug(f"{name}: giving up after {times} attempts: {e}")
                        raise
                    delay = delay_sec[min(attempt - 1, len(delay_sec) - 1)]
                    logger.warning(
                        f"{name} failed ({type(e).__name__}: {e}), "
                        f"retry {attempt}/{times - 1} in {delay}s"
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError(f"{name} called with times={times}")

        return wrapper

    return decorator
