# packages/botrunner_core/data/models/position.py
"""
Position model
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import Index, text
from typing import Optional
from datetime import datetime


class Position(SQLModel, table=True):
    """
    A bot's exposure in one symbol.

    At most one open position per (bot, symbol), enforced by a partial
    unique index. Opened by an entry fill, closed by an opposing fill.
    """
    __tablename__ = "positions"
    __table_args__ = (
        Index(
            "uq_positions_open_bot_symbol",
            "bot_id",
            "symbol",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bots.id", index=True)
    user_id: str
    run_id: Optional[int] = Field(default=None, foreign_key="runs.id")

    symbol: str
    side: str  # buy / sell
    status: str = Field(default="open")  # open / closed

    quantity: float
    entry_price: float
    current_price: Optional[float] = None
    exit_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None

    unrealized_pnl: float = Field(default=0.0)
    realized_pnl: Optional[float] = None
    total_fees: float = Field(default=0.0)

    entry_order_id: Optional[int] = Field(default=None, foreign_key="orders.id")
    exit_order_id: Optional[int] = Field(default=None, foreign_key="orders.id")

    opened_at: datetime = Field(default_factory=datetime.now)
    closed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.now)
