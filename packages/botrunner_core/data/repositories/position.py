"""
持仓仓储
"""
from sqlmodel import select, Session
from sqlalchemy.exc import IntegrityError
from typing import Any, List, Optional
from datetime import datetime

from botrunner_core.data.models.position import Position
from botrunner_core.utils import get_logger

logger = get_logger("position_repository")


class PositionRepository:
    """持仓仓储"""

    def __init__(self, session: Session):
        self.session = session

    def open(self, **kwargs) -> Position:
        """
        创建新的持仓（开仓）

        Raises:
            IntegrityError: the bot already has an open position in the symbol
        """
        position = Position(status="open", **kwargs)
        self.session.add(position)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.error(f"❌ Open position rejected by store: bot {position.bot_id} {position.symbol}")
            raise
        self.session.refresh(position)
        logger.info(
            f"✅ Opened position: {position.symbol} {position.side} "
            f"{position.quantity:.6f} @ {position.entry_price:.2f}"
        )
        return position

    def close(
        self,
        position: Position,
        exit_price: float,
        realized_pnl: float,
        fee: float,
        exit_order_id: Optional[int],
    ) -> Position:
        """
        关闭持仓（平仓）

        Args:
            position: 要关闭的持仓
            exit_price: 出场价格
            realized_pnl: 已实现盈亏（扣除手续费）
            fee: 本次平仓手续费
            exit_order_id: 平仓订单ID
        """
        now = datetime.now()
        position.status = "closed"
        position.exit_price = exit_price
        position.current_price = exit_price
        position.realized_pnl = realized_pnl
        position.unrealized_pnl = 0.0
        position.total_fees = (position.total_fees or 0.0) + fee
        position.exit_order_id = exit_order_id
        position.closed_at = now
        position.updated_at = now
        self.session.add(position)
        self.session.commit()
        self.session.refresh(position)
        logger.info(f"✅ Closed position: {position.symbol} PnL: ${realized_pnl:.2f}")
        return position

    def get_by_id(self, position_id: int) -> Optional[Position]:
        return self.session.get(Position, position_id)

    def get_open(self, bot_id: int, symbol: Optional[str] = None) -> Optional[Position]:
        """获取机器人的开仓持仓"""
        statement = (
            select(Position)
            .where(Position.bot_id == bot_id)
            .where(Position.status == "open")
        )
        if symbol:
            statement = statement.where(Position.symbol == symbol)
        statement = statement.order_by(Position.opened_at.desc())
        return self.session.exec(statement).first()

    def mark(self, position: Position, price: float) -> Position:
        """Update mark price and unrealized PnL"""
        if position.side == "buy":
            unrealized = (price - position.entry_price) * position.quantity
        else:
            unrealized = (position.entry_price - price) * position.quantity
        return self.update(position, current_price=price, unrealized_pnl=unrealized)

    def update(self, position: Position, **changes: Any) -> Position:
        for key, value in changes.items():
            setattr(position, key, value)
        position.updated_at = datetime.now()
        self.session.add(position)
        self.session.commit()
        self.session.refresh(position)
        return position

    def get_recent_closed(self, bot_id: int, limit: int = 10) -> List[Position]:
        """
        获取最近的已平仓持仓（用于计算连续亏损和冷却期）

        Returns:
            按平仓时间降序排列
        """
        statement = (
            select(Position)
            .where(Position.bot_id == bot_id)
            .where(Position.status == "closed")
            .order_by(Position.closed_at.desc(), Position.id.desc())
            .limit(limit)
        )
        return list(self.session.exec(statement).all())
