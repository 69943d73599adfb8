"""Shared concurrency primitives for batched pipeline work.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped
   in a semaphore acquire/release, used to summarize independent sections
   with bounded concurrency.

2. **batched** -- slices a list into fixed-size sub-batches; callers pause
   between batches with :func:`pause` to stay under provider rate limits.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Sequence
from typing import Awaitable, TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
    limit: int = 4,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  When omitted a fresh
        semaphore of size *limit* is created for this call.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.
    limit:
        Concurrency bound used when *semaphore* is not given.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


def batched(items: Sequence[_T], size: int) -> Iterator[list[_T]]:
    """Yield consecutive slices of *items* with at most *size* elements."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


async def pause(seconds: float) -> None:
    """Sleep between batches; a non-positive delay is a no-op."""
    if seconds > 0:
        await asyncio.sleep(seconds)
