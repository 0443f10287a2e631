"""
Retry / timeout / circuit breaker tests
"""
import asyncio

import pytest

from botrunner_core.errors import CircuitOpenError
from botrunner_core.services.resilience import CircuitBreakerRegistry, ResilientCaller


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Flaky:
    """Fails ``failures`` times, then returns ``value``"""

    def __init__(self, failures: int, value="ok", error=ConnectionError):
        self.failures = failures
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self, *args):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.value


@pytest.fixture
def delays():
    return []


@pytest.fixture
def caller_factory(delays):
    async def fake_sleep(seconds):
        delays.append(seconds)

    def _make(breakers, **kwargs):
        kwargs.setdefault("base_delay", 0.5)
        return ResilientCaller(breakers, sleep=fake_sleep, **kwargs)

    return _make


class TestResilientCaller:

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self, caller_factory, delays):
        func = Flaky(failures=2)
        caller = caller_factory(CircuitBreakerRegistry(), max_retries=2)

        assert await caller.call("svc", func) == "ok"
        assert func.calls == 3
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_reraise(self, caller_factory):
        breakers = CircuitBreakerRegistry(failure_threshold=3)
        caller = caller_factory(breakers, max_retries=1)

        with pytest.raises(ConnectionError):
            await caller.call("svc", Flaky(failures=5))
        # one exhausted call is one breaker failure
        assert breakers.state("svc").failures == 1

    @pytest.mark.asyncio
    async def test_non_retryable_not_retried(self, caller_factory):
        func = Flaky(failures=1, error=KeyError)
        caller = caller_factory(CircuitBreakerRegistry(), max_retries=3, retry_on=(ConnectionError,))

        with pytest.raises(KeyError):
            await caller.call("svc", func)
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_timeout(self, caller_factory):
        async def slow():
            await asyncio.sleep(1)

        caller = caller_factory(CircuitBreakerRegistry(), timeout=0.01, max_retries=0)
        with pytest.raises(asyncio.TimeoutError):
            await caller.call("svc", slow)


class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, caller_factory):
        clock = FakeClock()
        breakers = CircuitBreakerRegistry(failure_threshold=2, reset_seconds=30, clock=clock)
        caller = caller_factory(breakers, max_retries=0)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await caller.call("svc", Flaky(failures=1))

        func = Flaky(failures=0)
        with pytest.raises(CircuitOpenError):
            await caller.call("svc", func)
        assert func.calls == 0

    @pytest.mark.asyncio
    async def test_half_open_after_reset(self, caller_factory):
        clock = FakeClock()
        breakers = CircuitBreakerRegistry(failure_threshold=1, reset_seconds=30, clock=clock)
        caller = caller_factory(breakers, max_retries=0)

        with pytest.raises(ConnectionError):
            await caller.call("svc", Flaky(failures=1))
        assert breakers.is_open("svc")

        clock.now = 30.0
        assert await caller.call("svc", Flaky(failures=0)) == "ok"
        assert not breakers.is_open("svc")
        assert breakers.state("svc").failures == 0

    def test_keys_are_independent(self):
        breakers = CircuitBreakerRegistry(failure_threshold=1)
        breakers.record_failure("exchange:kraken")
        assert breakers.is_open("exchange:kraken")
        assert not breakers.is_open("ai:advisor")

    def test_fresh_registry_has_no_state(self):
        assert not CircuitBreakerRegistry().is_open("anything")
