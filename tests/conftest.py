#!/usr/bin/env python3
"""
Pytest fixtures for BotRunner unit tests
Provides an isolated database, explicit settings and fake collaborators
"""
import sys
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, List, Optional
import pytest
from sqlmodel import Session, SQLModel, create_engine

# Add project to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "packages"))

import botrunner_core.data.models  # noqa: F401
from botrunner_core.config import TradingSettings
from botrunner_core.data.models.exchange_credential import ExchangeCredential
from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.exchange_credential import ExchangeCredentialRepository
from botrunner_core.errors import ExchangeError
from botrunner_core.trading.state import MarketTick, OrderPlacement, Ticker, TradeDecision


USER_ID = "alice"
OTHER_USER_ID = "bob"
T0 = datetime(2024, 1, 1, 12, 0, 0)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    """File backed SQLite so every session sees committed rows"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture
def settings() -> TradingSettings:
    """Live gates open by default; tests close them explicitly"""
    return TradingSettings(
        _env_file=None,
        LIVE_TRADING_ENABLED=True,
        KILL_SWITCH_ENABLED=False,
        LIVE_ARM_COOLDOWN_SECONDS=60,
        LIVE_CIRCUIT_BREAKER_THRESHOLD=3,
        PAPER_FEE_RATE=0.001,
        MAX_TRADES_PER_HOUR=5,
        MAX_CONSECUTIVE_LOSSES=3,
        COOLDOWN_MINUTES_AFTER_LOSS=30,
        AI_ENABLED=False,
        AI_CONFIDENCE_THRESHOLD=0.55,
        MAX_BOT_ERRORS=5,
    )


# =============================================================================
# Fake exchange adapter
# =============================================================================

class FakeAdapter:
    """
    Stands in for ExchangeAdapter.

    tickers: symbol -> Ticker, or an exception instance to raise
    placements: queue of OrderPlacement answers for place_order
    orders: exchange_order_id -> OrderPlacement answered by fetch_order
        (unknown ids are still open)
    cancel_ok: answer of cancel_order
    """

    def __init__(
        self,
        tickers: Optional[Dict[str, Any]] = None,
        placements: Optional[List[OrderPlacement]] = None,
        orders: Optional[Dict[str, OrderPlacement]] = None,
        cancel_ok: bool = True,
    ):
        self.tickers = tickers or {}
        self.placements = list(placements or [])
        self.orders = dict(orders or {})
        self.cancel_ok = cancel_ok
        self.placed: List[Dict[str, Any]] = []
        self.fetched: List[str] = []
        self.canceled: List[str] = []
        self.closed = 0

    async def get_ticker(self, symbol: str) -> Ticker:
        value = self.tickers.get(symbol)
        if value is None:
            raise ExchangeError(f"No ticker for {symbol}", code="SERVICE_UNAVAILABLE")
        if isinstance(value, Exception):
            raise value
        return value

    async def place_order(self, symbol, side, order_type, quantity, client_order_id=None, price=None):
        self.placed.append({
            "symbol": symbol,
            "side": side,
            "order_type": order_type,
            "quantity": quantity,
            "client_order_id": client_order_id,
        })
        if self.placements:
            return self.placements.pop(0)
        return OrderPlacement(success=True, exchange_order_id=f"ex-{len(self.placed)}", status="filled", filled=quantity)

    async def fetch_order(self, exchange_order_id, symbol):
        self.fetched.append(exchange_order_id)
        return self.orders.get(
            exchange_order_id,
            OrderPlacement(success=True, exchange_order_id=exchange_order_id, status="submitted"),
        )

    async def cancel_order(self, exchange_order_id, symbol):
        self.canceled.append(exchange_order_id)
        return self.cancel_ok

    async def close(self):
        self.closed += 1


def make_ticker(symbol: str = "BTC/USD", price: float = 50000.0, change_24h: float = 0.0) -> Ticker:
    return Ticker(symbol=symbol, price=price, bid=price - 5, ask=price + 5, volume=100.0, change_24h=change_24h)


def make_tick(symbol: str = "BTC/USD", price: float = 50000.0, change_24h: float = 0.0, source: str = "exchange") -> MarketTick:
    return MarketTick(
        symbol=symbol, price=price, bid=price - 5, ask=price + 5,
        change_24h=change_24h, source=source,
    )


def make_decision(trace_id: str = "trace-1", side: str = "buy", size: float = 0.01,
                  entry: float = 50000.0, symbol: str = "BTC/USD", run_id: Optional[int] = None) -> TradeDecision:
    if side == "buy":
        stop, take_profit = entry * 0.98, entry * 1.05
    else:
        stop, take_profit = entry * 1.02, entry * 0.95
    return TradeDecision(
        symbol=symbol,
        side=side,
        size=size,
        entry=entry,
        stop=stop,
        take_profit=take_profit,
        confidence=0.7,
        rationale="test decision",
        trace_id=trace_id,
        run_id=run_id,
    )


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter(tickers={"BTC/USD": make_ticker()})


# =============================================================================
# Domain fixtures
# =============================================================================

@pytest.fixture
def make_bot(session):
    """Factory: make_bot(name=..., mode=..., status=..., **fields)"""
    repo = BotRepository(session)

    def _make(name: str = "test-bot", user_id: str = USER_ID, **fields):
        values = {
            "symbol": "BTC/USD",
            "mode": "paper",
            "status": "stopped",
            "strategy_id": "trend_following",
            "max_position_size": 0.1,
            "max_daily_loss": 100.0,
            "stop_loss_pct": 2.0,
            "take_profit_pct": 5.0,
            "initial_capital": 10000.0,
            "current_capital": 10000.0,
        }
        values.update(fields)
        return repo.create(user_id=user_id, name=name, **values)

    return _make


@pytest.fixture
def paper_bot(make_bot):
    return make_bot(name="paper-bot")


@pytest.fixture
def credential(session) -> ExchangeCredential:
    return ExchangeCredentialRepository(session).save(
        ExchangeCredential(user_id=USER_ID, exchange_type="kraken", api_key="key", api_secret="secret")
    )


@pytest.fixture
def live_bot(make_bot, credential):
    return make_bot(name="live-bot", mode="live", api_key_id=credential.id)
