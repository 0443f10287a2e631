# packages/botrunner_core/services/resilience.py
"""
Timeouts, retry with exponential backoff and per-key circuit breakers for
outbound calls (exchange, AI provider).

Breaker state lives in a CircuitBreakerRegistry instance that is handed to
whoever needs it, so tests can build a fresh one with a fake clock.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from botrunner_core.errors import CircuitOpenError
from botrunner_core.utils import get_logger

logger = get_logger("resilience")


@dataclass
class BreakerState:
    failures: int = 0
    opened_at: Optional[float] = None


class CircuitBreakerRegistry:
    """
    Per-key breaker: opens after ``failure_threshold`` consecutive failures,
    lets a trial call through once ``reset_seconds`` have passed.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(1, failure_threshold)
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._states: Dict[str, BreakerState] = {}

    def state(self, key: str) -> BreakerState:
        return self._states.setdefault(key, BreakerState())

    def is_open(self, key: str) -> bool:
        state = self.state(key)
        if state.opened_at is None:
            return False
        if self._clock() - state.opened_at >= self.reset_seconds:
            # half-open: the next call decides
            return False
        return True

    def record_success(self, key: str):
        state = self.state(key)
        if state.opened_at is not None:
            logger.info(f"✅ Circuit closed for {key}")
        state.failures = 0
        state.opened_at = None

    def record_failure(self, key: str):
        state = self.state(key)
        state.failures += 1
        if state.failures >= self.failure_threshold:
            state.opened_at = self._clock()
            logger.error(f"🚨 Circuit opened for {key} after {state.failures} failures")


class ResilientCaller:
    """
    Wraps an async call with a timeout, retries and a circuit breaker.

    A call that exhausts its retries counts as a single breaker failure.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        timeout: float = 10.0,
        max_retries: int = 2,
        base_delay: float = 0.5,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.breakers = breakers
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.retry_on = retry_on
        self._sleep = sleep

    async def call(self, key: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Raises:
            CircuitOpenError: breaker for ``key`` is open; ``func`` is not called
            the last exception once all retries are used
        """
        if self.breakers.is_open(key):
            raise CircuitOpenError(key)

        for attempt in range(self.max_retries + 1):
            try:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
            except self.retry_on as e:
                if attempt == self.max_retries:
                    logger.error(f"❌ {key}: all {self.max_retries + 1} attempts failed: {e!r}")
                    self.breakers.record_failure(key)
                    raise
                delay = self.base_delay * (2 ** attempt)
                logger.warning(f"⚠️ {key}: retry {attempt + 1}/{self.max_retries} in {delay:.2f}s ({e!r})")
                await self._sleep(delay)
            else:
                self.breakers.record_success(key)
                return result
