"""Per-host rate limiting utilities."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


class RateLimiter:
    """Simple token bucket per host."""

    def __init__(self, *, rate: float = 1.5) -> None:
        self.rate = rate
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_request: dict[str, float] = defaultdict(lambda: 0.0)

    async def wait_for_host(self, host: str) -> None:
        lock = self._locks[host]
        async with lock:
            now = time.monotonic()
            elapsed = now - self._last_request[host]
            min_interval = 1.0 / self.rate
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_request[host] = time.monotonic()


async def in_batches(
    items: Iterable[T],
    handler: Callable[[T], Awaitable[R]],
    *,
    batch_size: int = 10,
    pause: float = 2.0,
) -> list[R]:
    """Run handler over items in concurrent batches with a pause between batches."""
    pending: Sequence[T] = list(items)
    results: list[R] = []
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        results.extend(await asyncio.gather(*(handler(item) for item in batch)))
        if start + batch_size < len(pending):
            await asyncio.sleep(pause)
    return results
