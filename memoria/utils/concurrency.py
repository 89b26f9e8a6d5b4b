"""Bounded-concurrency helpers.

:func:`throttled_gather` is a drop-in replacement for ``asyncio.gather``
that wraps each awaitable in a semaphore acquire/release.  The embedding
service uses it to fan a large chunk list out into provider-sized batches
without opening more than a handful of requests at once.

:func:`batched` splits a sequence into fixed-size slices, preserving order.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Sequence, TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = False,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore that bounds how many awaitables execute at once.
    return_exceptions:
        Mirrors ``asyncio.gather``: when ``True`` exceptions are returned
        in place of results instead of being raised.  When ``False`` the
        first failure cancels every awaitable still pending or waiting
        for a slot, then propagates.

    Returns
    -------
    list
        Results in the same order as the input awaitables.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [asyncio.ensure_future(_wrapped(c)) for c in coros]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except BaseException:
        # One awaitable failed: stop the rest instead of leaving them running.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for coro in coros:
            if asyncio.iscoroutine(coro):
                coro.close()
        raise


def batched(items: Sequence[_T], size: int) -> list[Sequence[_T]]:
    """Split *items* into consecutive slices of at most *size* elements."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]
