"""
ExchangeAdapter tests (fake ccxt exchange object, no network)
"""
import ccxt
import pytest

from botrunner_core.errors import CircuitOpenError, ExchangeError
from botrunner_core.services.exchange import ExchangeAdapter, normalize_exchange_error, normalize_order_status
from botrunner_core.services.resilience import CircuitBreakerRegistry


class FakeExchange:
    """Minimal async ccxt surface; ``errors`` are raised in order before answering"""

    def __init__(self, ticker=None, order=None, errors=None):
        self.ticker = ticker or {"symbol": "BTC/USD", "last": 50000.0, "bid": 49990.0, "ask": 50010.0,
                                 "baseVolume": 12.5, "percentage": 3.2}
        self.order = order or {"id": 123, "status": "closed", "filled": 0.01, "average": 50005.0}
        self.errors = list(errors or [])
        self.ticker_calls = 0
        self.order_calls = []
        self.closed = False

    def _maybe_raise(self):
        if self.errors:
            raise self.errors.pop(0)

    async def fetch_ticker(self, symbol):
        self.ticker_calls += 1
        self._maybe_raise()
        return self.ticker

    async def fetch_balance(self):
        self._maybe_raise()
        return {"total": {"USD": 1000.0, "BTC": 0.0, "ETH": 2.5}}

    async def create_order(self, symbol, order_type, side, amount, price=None, params=None):
        self.order_calls.append((symbol, order_type, side, amount, params))
        self._maybe_raise()
        return self.order

    async def cancel_order(self, order_id, symbol):
        self._maybe_raise()
        return {"id": order_id}

    async def close(self):
        self.closed = True


def make_adapter(exchange, breakers=None):
    return ExchangeAdapter("kraken", breakers or CircuitBreakerRegistry(), exchange=exchange,
                           max_retries=2, base_delay=0.0)


@pytest.mark.parametrize("exc, code", [
    (ccxt.PermissionDenied("no"), "PERMISSION_DENIED"),
    (ccxt.AuthenticationError("bad key"), "INVALID_API_KEY"),
    (ccxt.InsufficientFunds("poor"), "INSUFFICIENT_FUNDS"),
    (ccxt.RateLimitExceeded("slow down"), "RATE_LIMIT"),
    (ccxt.DDoSProtection("slow down"), "RATE_LIMIT"),
    (ccxt.ExchangeNotAvailable("down"), "SERVICE_UNAVAILABLE"),
    (ccxt.RequestTimeout("timeout"), "SERVICE_UNAVAILABLE"),
    (ccxt.NetworkError("net"), "SERVICE_UNAVAILABLE"),
    (CircuitOpenError("exchange:kraken"), "SERVICE_UNAVAILABLE"),
    (ccxt.InvalidOrder("bad order"), "EXCHANGE_ERROR"),
    (RuntimeError("?"), "EXCHANGE_ERROR"),
])
def test_normalize_exchange_error(exc, code):
    assert normalize_exchange_error(exc) == code


@pytest.mark.parametrize("raw, status", [
    ("closed", "filled"),
    ("open", "submitted"),
    ("canceled", "rejected"),
    ("expired", "rejected"),
    (None, "submitted"),
    ("partially_filled", "submitted"),
])
def test_normalize_order_status(raw, status):
    assert normalize_order_status(raw) == status


class TestTicker:

    @pytest.mark.asyncio
    async def test_ticker_fields(self):
        ticker = await make_adapter(FakeExchange()).get_ticker("BTC/USD")
        assert ticker.price == 50000.0
        assert ticker.bid == 49990.0
        assert ticker.volume == 12.5
        assert ticker.change_24h == 3.2

    @pytest.mark.asyncio
    async def test_ticker_retries_network_errors(self):
        exchange = FakeExchange(errors=[ccxt.NetworkError("blip")])
        ticker = await make_adapter(exchange).get_ticker("BTC/USD")
        assert ticker.price == 50000.0
        assert exchange.ticker_calls == 2

    @pytest.mark.asyncio
    async def test_ticker_error_normalized(self):
        exchange = FakeExchange(errors=[ccxt.AuthenticationError("bad key")])
        with pytest.raises(ExchangeError) as exc_info:
            await make_adapter(exchange).get_ticker("BTC/USD")
        assert exc_info.value.code == "INVALID_API_KEY"
        assert exchange.ticker_calls == 1

    @pytest.mark.asyncio
    async def test_open_breaker_short_circuits(self):
        breakers = CircuitBreakerRegistry(failure_threshold=1)
        breakers.record_failure("exchange:kraken")
        exchange = FakeExchange()
        with pytest.raises(ExchangeError) as exc_info:
            await make_adapter(exchange, breakers).get_ticker("BTC/USD")
        assert exc_info.value.code == "SERVICE_UNAVAILABLE"
        assert exchange.ticker_calls == 0


class TestOrders:

    @pytest.mark.asyncio
    async def test_filled_order(self):
        exchange = FakeExchange()
        placement = await make_adapter(exchange).place_order("BTC/USD", "buy", "market", 0.01, client_order_id="live_1_t")

        assert placement.success
        assert placement.status == "filled"
        assert placement.exchange_order_id == "123"
        assert placement.average == 50005.0
        assert exchange.order_calls[0][4] == {"clientOrderId": "live_1_t"}

    @pytest.mark.asyncio
    async def test_order_failure_is_returned(self):
        exchange = FakeExchange(errors=[ccxt.InsufficientFunds("poor")])
        placement = await make_adapter(exchange).place_order("BTC/USD", "buy", "market", 0.01)
        assert not placement.success
        assert placement.error_code == "INSUFFICIENT_FUNDS"

    @pytest.mark.asyncio
    async def test_order_never_retried(self):
        exchange = FakeExchange(errors=[ccxt.NetworkError("blip")])
        placement = await make_adapter(exchange).place_order("BTC/USD", "buy", "market", 0.01)
        assert placement.error_code == "SERVICE_UNAVAILABLE"
        assert len(exchange.order_calls) == 1

    @pytest.mark.asyncio
    async def test_rejected_by_exchange(self):
        exchange = FakeExchange(order={"id": 9, "status": "rejected"})
        placement = await make_adapter(exchange).place_order("BTC/USD", "sell", "market", 0.01)
        assert not placement.success
        assert placement.status == "rejected"
        assert placement.error_code == "ORDER_REJECTED"

    @pytest.mark.asyncio
    async def test_cancel(self):
        assert await make_adapter(FakeExchange()).cancel_order("123", "BTC/USD")
        failing = FakeExchange(errors=[ccxt.OrderNotFound("gone")])
        assert not await make_adapter(failing).cancel_order("123", "BTC/USD")


@pytest.mark.asyncio
async def test_balances_skip_zero():
    balances = await make_adapter(FakeExchange()).get_balances()
    assert balances == {"USD": 1000.0, "ETH": 2.5}


@pytest.mark.asyncio
async def test_close():
    exchange = FakeExchange()
    await make_adapter(exchange).close()
    assert exchange.closed
