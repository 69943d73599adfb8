"""Exponential backoff with full jitter for transient provider errors.

Only :class:`~kb_ingest.utils.errors.RateLimitError` and
:class:`~kb_ingest.utils.errors.ProviderUnavailableError` are retried by
default; everything else propagates on the first failure.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from kb_ingest.utils.errors import ProviderUnavailableError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (RateLimitError, ProviderUnavailableError)


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    rng: random.Random | None = None,
) -> float:
    """Return the sleep before retry number *attempt* (1-based).

    Full jitter: a uniform draw between zero and the capped exponential
    ceiling ``min(max_delay, base_delay * 2 ** (attempt - 1))``.
    """
    ceiling = min(max_delay, base_delay * (2 ** max(0, attempt - 1)))
    return (rng or random).uniform(0, ceiling)


async def retry_async(
    func: Callable[[], Awaitable[_T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 20.0,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
    operation: str = "operation",
    rng: random.Random | None = None,
) -> _T:
    """Await ``func()`` and retry it on *retry_on* errors.

    Parameters
    ----------
    func:
        Zero-argument coroutine factory; called once per attempt.
    max_attempts:
        Total attempts including the first call.
    base_delay, max_delay:
        Backoff parameters in seconds.
    retry_on:
        Exception types considered transient.
    operation:
        Label used in log events.

    Raises
    ------
    BaseException
        The last transient error once attempts are exhausted, or any
        non-transient error immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(exc),
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, rng)
            logger.info(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay=round(delay, 3),
                error=str(exc),
            )
            await asyncio.sleep(delay)
