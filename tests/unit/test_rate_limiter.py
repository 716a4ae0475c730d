"""
Unit tests for RateLimiter spacing under concurrent callers.
"""

import asyncio
import time

import pytest

from paddock.services.racing.client import RateLimiter


@pytest.mark.asyncio
async def test_first_acquire_is_immediate():
    limiter = RateLimiter(min_interval=5.0)
    started = time.monotonic()
    await limiter.acquire()
    assert time.monotonic() - started < 1.0
    assert limiter.last_granted is not None


@pytest.mark.asyncio
async def test_concurrent_acquires_are_spaced():
    """Consecutive grants differ by at least min_interval regardless of concurrency."""
    limiter = RateLimiter(min_interval=0.05)
    grants = []

    async def request():
        await limiter.acquire()
        grants.append(limiter.last_granted)

    await asyncio.gather(*(request() for _ in range(5)))

    assert len(grants) == 5
    grants.sort()
    for previous, current in zip(grants, grants[1:]):
        assert current - previous >= 0.05


@pytest.mark.asyncio
async def test_sequential_acquire_after_interval_does_not_wait():
    limiter = RateLimiter(min_interval=0.02)
    await limiter.acquire()
    await asyncio.sleep(0.03)

    started = time.monotonic()
    await limiter.acquire()
    assert time.monotonic() - started < 0.02
