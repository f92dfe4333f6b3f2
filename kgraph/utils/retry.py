"""Exponential backoff for flaky async I/O (Redis round trips)."""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Callable, TypeVar

from kgraph.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based), with up to 50% jitter."""
    delay = min(base_delay * 2 ** (attempt - 1), max_delay)
    return delay + random.uniform(0, delay / 2)


def async_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    give_up_on: tuple[type[BaseException], ...] = (),
) -> Callable[[F], F]:
    """Retry an async callable on ``retry_on`` errors.

    ``give_up_on`` wins over ``retry_on`` for exceptions matching both.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except give_up_on:
                    raise
                except retry_on as exc:
                    if attempt >= max_attempts:
                        logger.warning("retry_exhausted", func=func.__name__, attempts=attempt, error=str(exc))
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        "retry_scheduled",
                        func=func.__name__,
                        attempt=attempt,
                        delay=round(delay, 2),
                        error=str(exc),
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper  # type: ignore[return-value]

    return decorator
