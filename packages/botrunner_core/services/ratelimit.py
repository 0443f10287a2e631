import asyncio
from collections import deque
from typing import Optional

from botrunner_core.utils import get_logger

logger = get_logger("rate_limiter")


class RateLimiter:
    """
    Async rate limiter with time window management.
    Ensures all API calls comply with both:
    1. Interval limit: minimum time between consecutive requests
    2. Window limit: maximum requests within a time window

    One instance per exchange adapter; nothing is shared at module level.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.0,
        max_requests: int = 20,
        time_window: float = 60.0,
    ):
        # Interval-based rate limiting
        self._last_request_time: Optional[float] = None
        self._rate_limit_seconds = min_interval_seconds

        # Time window-based rate limiting
        self._request_times = deque()
        self._max_requests = max_requests
        self._time_window = time_window

        self._lock = asyncio.Lock()

    def set_rate_limit(self, rate_limit_ms: int):
        """
        Set the minimum interval between requests in milliseconds
        (ccxt exposes ``exchange.rateLimit`` in ms)
        """
        self._rate_limit_seconds = rate_limit_ms / 1000
        logger.info(f"Rate limit set to {self._rate_limit_seconds:.3f}s")

    def _evict(self, now: float):
        while self._request_times and now - self._request_times[0] > self._time_window:
            self._request_times.popleft()

    async def wait_if_needed(self):
        """
        Async wait if needed before sending the next request
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            current_time = loop.time()

            # Step 1: Remove expired requests from the time window
            self._evict(current_time)

            # Step 2: Time window limit
            if len(self._request_times) >= self._max_requests:
                wait_time = self._time_window - (current_time - self._request_times[0]) + 0.1
                logger.warning(
                    f"⚠️  Time window limit exceeded: {len(self._request_times)} requests in last "
                    f"{self._time_window}s. Waiting {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)
                current_time = loop.time()
                self._evict(current_time)

            # Step 3: Interval limit
            if self._last_request_time is not None:
                elapsed = current_time - self._last_request_time
                if elapsed < self._rate_limit_seconds:
                    await asyncio.sleep(self._rate_limit_seconds - elapsed)
                    current_time = loop.time()

            # Step 4: Record this request
            self._last_request_time = current_time
            self._request_times.append(current_time)
