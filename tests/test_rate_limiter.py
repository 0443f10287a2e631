"""
RateLimiter tests
"""
import asyncio

import pytest

from botrunner_core.services.ratelimit import RateLimiter


@pytest.mark.asyncio
async def test_interval_enforced():
    limiter = RateLimiter()
    limiter.set_rate_limit(50)
    loop = asyncio.get_running_loop()

    start = loop.time()
    await limiter.wait_if_needed()
    await limiter.wait_if_needed()
    assert loop.time() - start >= 0.045


@pytest.mark.asyncio
async def test_instances_do_not_share_state():
    first = RateLimiter(min_interval_seconds=10.0)
    second = RateLimiter(min_interval_seconds=10.0)
    await first.wait_if_needed()
    # a fresh limiter never waits on its first request
    await asyncio.wait_for(second.wait_if_needed(), timeout=1.0)
