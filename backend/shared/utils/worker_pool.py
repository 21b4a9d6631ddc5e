"""Fixed-size async worker pool over a shared cursor."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """
    Run ``worker(item, index)`` for every item with at most ``limit`` in flight.

    ``min(limit, len(items))`` workers each pull the next index from one shared
    cursor until it is exhausted. Results come back in input order. ``worker``
    is expected to handle its own failures; an exception aborts the pool.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    if not items:
        return []

    results: list[R] = [None] * len(items)  # type: ignore[list-item]
    cursor = 0

    async def _drain() -> None:
        nonlocal cursor
        while cursor < len(items):
            index = cursor
            cursor += 1
            results[index] = await worker(items[index], index)

    pool_size = min(limit, len(items))
    await asyncio.gather(*(_drain() for _ in range(pool_size)))
    return results
