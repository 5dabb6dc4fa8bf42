"""
Bounded Concurrency Helpers

Independent provider calls (per-symbol requests to a provider without a
batch endpoint, per-provider search fan-out, per-symbol chart requests)
run concurrently, but never more than a fixed number at once.

Results always come back in the order the awaitables were supplied,
never in completion order.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> List[Any]:
    """
    Run ``worker(item)`` for every item with at most ``limit`` in flight.

    All tasks are joined before returning. Exceptions are returned in place
    of results (like ``asyncio.gather(return_exceptions=True)``) so callers
    can judge the whole batch at once.

    Args:
        items: Inputs, in the order results should be returned
        worker: Coroutine function applied to each input
        limit: Maximum number of concurrently running workers (>= 1)

    Returns:
        List of results or exceptions, aligned with ``items``

    Example:
        >>> results = await gather_bounded(["BTC", "ETH"], fetch_one, limit=4)
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
