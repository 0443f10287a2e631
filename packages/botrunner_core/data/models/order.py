# packages/botrunner_core/data/models/order.py
"""
Order model
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON
from typing import Optional, Dict, Any
from datetime import datetime


ORDER_TERMINAL_STATUSES = ("filled", "rejected", "canceled")


class Order(SQLModel, table=True):
    """
    An attempted trade.

    status: pending -> submitted -> filled | rejected | canceled.
    ``client_order_id`` is unique at the storage level; it is the only
    mutual-exclusion mechanism against duplicate fills.
    """
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bots.id", index=True)
    user_id: str
    run_id: Optional[int] = Field(default=None, foreign_key="runs.id")

    client_order_id: str = Field(unique=True, index=True)
    exchange_order_id: Optional[str] = None

    symbol: str
    side: str  # buy / sell
    order_type: str = Field(default="market")
    status: str = Field(default="pending", index=True)

    quantity: float
    price: Optional[float] = None  # decision entry price
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    filled_quantity: float = Field(default=0.0)
    average_fill_price: Optional[float] = None
    fee: float = Field(default=0.0)
    slippage: Optional[float] = None

    strategy_id: Optional[str] = None
    reason: Optional[str] = None
    risk_checked: bool = Field(default=True)
    risk_flags: Optional[Dict[str, Any]] = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.now, index=True)
    submitted_at: Optional[datetime] = None
    filled_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in ORDER_TERMINAL_STATUSES
