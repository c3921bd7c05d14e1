"""Fixed-size async worker pool."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")


async def run_pool(
    items: Iterable[T],
    handler: Callable[[T], Awaitable[None]],
    concurrency: int,
) -> None:
    """Run ``handler`` over ``items`` with at most ``concurrency`` in flight.

    Workers pull from a shared queue. The first exception cancels every
    other worker and is re-raised once they have all unwound, so cleanup in
    ``finally`` blocks (temporary files) always runs before the caller sees
    the failure.
    """
    queue: asyncio.Queue[T] = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)
    if queue.empty():
        return

    async def worker() -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await handler(item)

    workers = [
        asyncio.create_task(worker()) for _ in range(max(1, min(concurrency, queue.qsize())))
    ]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise
