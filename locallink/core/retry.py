"""Async retry logic with exponential backoff for store operations."""
from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from locallink.core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def async_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.05,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    exceptions: tuple[type[BaseException], ...] = (TransientStoreError,),
):
    """Retry decorator with exponential backoff for idempotent coroutines.

    Args:
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay between retries
        exponential_base: Base for exponential backoff calculation
        exceptions: Exceptions that trigger a retry

    Example:
        @async_retry(max_attempts=3)
        async def reject_offer(offer_id):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = initial_delay
            last_exception: BaseException | None = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt < max_attempts - 1:
                        logger.warning(
                            "Store operation %s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                            func.__name__,
                            attempt + 1,
                            max_attempts,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                        delay = min(delay * exponential_base, max_delay)
                    else:
                        logger.error(
                            "Store operation %s failed after %d attempts: %s",
                            func.__name__,
                            max_attempts,
                            e,
                        )

            assert last_exception is not None
            raise last_exception

        return wrapper

    return decorator
