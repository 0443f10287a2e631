"""
Market snapshot tests
"""
import pytest

from botrunner_core.errors import ExchangeError
from botrunner_core.services.market_data import MarketDataService, fallback_quote
from conftest import FakeAdapter, make_ticker


class TestFallbackQuote:

    def test_deterministic(self):
        first = fallback_quote("BTC/USD")
        second = fallback_quote("BTC/USD")
        assert first.price == second.price
        assert first.change_24h == second.change_24h

    def test_formula(self):
        seed = sum(ord(c) for c in "ETH/USD")
        quote = fallback_quote("ETH/USD")
        assert quote.price == 95000 + seed % 1000
        assert quote.bid == quote.price - 10
        assert quote.ask == quote.price + 10
        assert quote.change_24h == pytest.approx(((seed % 100) - 50) / 10)

    def test_never_fresh(self):
        quote = fallback_quote("BTC/USD")
        assert quote.source == "fallback"
        assert not quote.is_fresh


class TestMarketDataService:

    @pytest.mark.asyncio
    async def test_exchange_snapshot(self):
        adapter = FakeAdapter(tickers={"BTC/USD": make_ticker(price=42000.0, change_24h=1.5)})
        tick = await MarketDataService(adapter).fetch_snapshot("BTC/USD")
        assert tick.source == "exchange"
        assert tick.is_fresh
        assert tick.price == 42000.0
        assert tick.change_24h == 1.5

    @pytest.mark.asyncio
    async def test_exchange_error_falls_back(self):
        adapter = FakeAdapter(tickers={"BTC/USD": ExchangeError("down", code="SERVICE_UNAVAILABLE")})
        tick = await MarketDataService(adapter).fetch_snapshot("BTC/USD")
        assert tick.source == "fallback"
        assert tick.price == fallback_quote("BTC/USD").price

    @pytest.mark.asyncio
    async def test_zero_price_falls_back(self):
        adapter = FakeAdapter(tickers={"BTC/USD": make_ticker(price=0.0)})
        tick = await MarketDataService(adapter).fetch_snapshot("BTC/USD")
        assert tick.source == "fallback"
