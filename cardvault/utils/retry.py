"""Retry helpers without external dependencies."""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable

import httpx

RETRY_EXCEPTIONS = (OSError, asyncio.TimeoutError, httpx.TransportError)

BASE_DELAY_SECONDS = 2.0


def retry_async(func: Callable[..., Awaitable], *, attempts: int = 3, delay: float = 1.0):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        wait = delay
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS:
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(wait + random.random())
                wait *= 2
    return wrapper


def backoff_seconds(retries: int, base: float = BASE_DELAY_SECONDS) -> float:
    """Exponential backoff for the given number of retries already made."""
    return base * (2 ** retries)
