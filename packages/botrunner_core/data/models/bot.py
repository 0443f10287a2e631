# packages/botrunner_core/data/models/bot.py
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON
from typing import Optional, Dict, Any
from datetime import datetime


class Bot(SQLModel, table=True):
    """
    Trading bot configuration and running totals.

    Created ``stopped``; mutated by control operations and by the tick
    orchestrator (heartbeat, capital/PnL, error counters).
    """
    __tablename__ = "bots"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    name: str

    # Strategy
    symbol: str = Field(default="BTC/USD")
    strategy_id: str = Field(default="trend_following")
    strategy_config: Optional[Dict[str, Any]] = Field(default_factory=dict, sa_column=Column(JSON))

    # paper | live
    mode: str = Field(default="paper")
    # stopped | running | paused | error
    status: str = Field(default="stopped", index=True)

    # Risk parameters
    max_position_size: float = Field(default=0.1)  # fraction of capital
    max_daily_loss: float = Field(default=100.0)
    stop_loss_pct: float = Field(default=2.0)
    take_profit_pct: float = Field(default=5.0)
    max_leverage: int = Field(default=1)

    # Running totals
    initial_capital: float = Field(default=10000.0)
    current_capital: float = Field(default=10000.0)
    daily_pnl: float = Field(default=0.0)
    total_pnl: float = Field(default=0.0)
    total_trades: int = Field(default=0)
    winning_trades: int = Field(default=0)

    # Health
    error_count: int = Field(default=0)
    last_error: Optional[str] = None
    last_heartbeat_at: Optional[datetime] = None
    last_tick_at: Optional[datetime] = None

    # Exchange credential reference (live only)
    api_key_id: Optional[int] = Field(default=None, foreign_key="exchange_credentials.id")

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
