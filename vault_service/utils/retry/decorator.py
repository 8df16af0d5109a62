from __future__ import annotations

import asyncio
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from vault_service.infra.metrics.tracking import (
    track_retry_attempt,
    track_retry_exhausted,
    track_retry_success,
)

from .exceptions import RetryError, RetryStatistics
from .strategies import RetryStrategy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    retry_if: Callable[[Exception], bool] | None = None,
    operation: str | None = None,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Retry an async callable with exponential backoff.

    Non-retryable exceptions propagate unchanged on the first failure.
    Exhausting ``max_attempts`` raises ``RetryError`` wrapping the last one.

    Args:
        max_attempts: Total attempts including the first call.
        initial_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound for a single delay.
        exponential_base: Growth factor between delays.
        jitter: Randomize each delay to avoid thundering herds.
        exceptions: Exception types considered retryable.
        retry_if: Predicate overriding ``exceptions``.
        operation: Name used in logs and metrics (defaults to the function name).
    """
    strategy = RetryStrategy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        exceptions=exceptions,
        retry_if=retry_if,
    )

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        name = operation or func.__name__

        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            statistics = RetryStatistics(start_time=time.monotonic())

            for attempt in range(max_attempts):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    if not strategy.should_retry(e):
                        raise

                    if attempt >= max_attempts - 1:
                        statistics.end_time = time.monotonic()
                        track_retry_exhausted(name)
                        logger.error(
                            f"All retry attempts exhausted for {name}",
                            extra={
                                "operation": name,
                                "attempts": attempt + 1,
                                "last_exception": str(e),
                                "total_delay": statistics.total_delay,
                            },
                        )
                        raise RetryError(e, attempt + 1, statistics) from e

                    delay = strategy.calculate_delay(attempt)
                    statistics.attempts += 1
                    statistics.total_delay += delay
                    statistics.exceptions.append(type(e).__name__)
                    track_retry_attempt(name, attempt + 2)

                    logger.warning(
                        f"Retrying {name} after {delay:.2f}s (attempt {attempt + 1}/{max_attempts})",
                        extra={
                            "operation": name,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "delay": delay,
                            "exception": str(e),
                        },
                    )
                    await asyncio.sleep(delay)
                else:
                    if statistics.attempts > 0:
                        track_retry_success(name, statistics.attempts + 1)
                    return result

            msg = "Retry logic error: exhausted all attempts"
            raise RuntimeError(msg)

        return async_wrapper

    return decorator
