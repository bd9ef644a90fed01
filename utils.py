import asyncio
import functools
import random
from datetime import datetime, timezone, timedelta

from fastapi.concurrency import run_in_threadpool

import settings


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def days_ago_iso(days: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


def days_ahead_iso(days: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def timestamp_ms() -> str:
    return str(int(datetime.now(timezone.utc).timestamp() * 1000))


async def simulate_latency(seconds: float, jitter: float = 0.0):
    """Hold for a simulated network round-trip. No-op when SIMULATED_LATENCY is off."""
    if not settings.SIMULATED_LATENCY:
        return
    await asyncio.sleep(seconds + (random.random() * jitter if jitter else 0.0))


def simulated(seconds: float = 0.0, jitter: float = 0.0):
    """Make a blocking store operation awaitable.

    The simulated delay is awaited on the event loop, then the body runs in
    the threadpool so pymongo and password hashing never block the loop.
    Once the body has started it runs to completion even if the caller is
    cancelled.
    """
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            if seconds:
                await simulate_latency(seconds, jitter)
            return await run_in_threadpool(fn, *args, **kwargs)
        return wrapper
    return decorator
