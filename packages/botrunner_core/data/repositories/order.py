"""
订单仓储
"""
from sqlmodel import select, Session, func
from sqlalchemy.exc import IntegrityError
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime

from botrunner_core.data.models.order import Order
from botrunner_core.errors import DuplicateOrderError
from botrunner_core.utils import get_logger

logger = get_logger("order_repository")


class OrderRepository:
    """订单仓储"""

    def __init__(self, session: Session):
        self.session = session

    def create(self, **kwargs) -> Order:
        """
        Insert a new order.

        Raises:
            DuplicateOrderError: ``client_order_id`` already exists (unique constraint)
        """
        order = Order(**kwargs)
        self.session.add(order)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if self.get_by_client_order_id(order.client_order_id) is not None:
                logger.warning(f"⚠️ Duplicate client_order_id rejected by store: {order.client_order_id}")
                raise DuplicateOrderError(order.client_order_id) from e
            raise
        self.session.refresh(order)
        logger.debug(f"Created order {order.id} [{order.status}] {order.client_order_id}")
        return order

    def get_by_id(self, order_id: int) -> Optional[Order]:
        return self.session.get(Order, order_id)

    def get_by_client_order_id(self, client_order_id: str) -> Optional[Order]:
        statement = select(Order).where(Order.client_order_id == client_order_id)
        return self.session.exec(statement).first()

    def update_status(self, order: Order, status: str, **changes: Any) -> Order:
        """
        Move an order to ``status``.

        Orders are immutable once filled/rejected/canceled.
        """
        if order.is_terminal:
            raise ValueError(f"Order {order.id} is already {order.status}")
        order.status = status
        for key, value in changes.items():
            setattr(order, key, value)
        order.updated_at = datetime.now()
        self.session.add(order)
        self.session.commit()
        self.session.refresh(order)
        return order

    def get_by_bot(self, bot_id: int, status: Optional[str] = None, limit: int = 100) -> List[Order]:
        statement = select(Order).where(Order.bot_id == bot_id)
        if status:
            statement = statement.where(Order.status == status)
        statement = statement.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
        return list(self.session.exec(statement).all())

    def get_working_orders(self, bot_id: int) -> List[Order]:
        """pending / submitted orders"""
        statement = (
            select(Order)
            .where(Order.bot_id == bot_id)
            .where(Order.status.in_(("pending", "submitted")))
        )
        return list(self.session.exec(statement).all())

    def count_since(self, bot_id: int, since: datetime, exclude_statuses: tuple = ("rejected", "canceled")) -> int:
        """Number of orders created at or after ``since``"""
        statement = (
            select(func.count(Order.id))
            .where(Order.bot_id == bot_id)
            .where(Order.created_at >= since)
        )
        if exclude_statuses:
            statement = statement.where(Order.status.not_in(exclude_statuses))
        return int(self.session.exec(statement).one())

    def cancel_working_orders(self, bot_id: int, reason: str, keep: Iterable[int] = ()) -> List[Dict[str, Any]]:
        """Mark working orders canceled, except the ids in ``keep``"""
        keep = set(keep)
        canceled = []
        for order in self.get_working_orders(bot_id):
            if order.id in keep:
                continue
            self.update_status(order, "canceled", reason=reason)
            canceled.append({"id": order.id, "client_order_id": order.client_order_id})
        if canceled:
            logger.warning(f"⚠️ Canceled {len(canceled)} working orders for bot {bot_id}")
        return canceled
