"""
事件日志仓储
"""
from sqlmodel import select, Session
from typing import Any, Dict, List, Optional

from botrunner_core.data.models.bot_event import BotEvent
from botrunner_core.utils import get_logger

logger = get_logger("bot_event_repository")


class BotEventRepository:
    """Append-only audit log"""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        user_id: str,
        event_type: str,
        message: str,
        severity: str = "info",
        bot_id: Optional[int] = None,
        run_id: Optional[int] = None,
        trace_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> BotEvent:
        event = BotEvent(
            bot_id=bot_id,
            user_id=user_id,
            run_id=run_id,
            trace_id=trace_id,
            event_type=event_type,
            severity=severity,
            message=message,
            payload=payload or {},
            metrics=metrics,
        )
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        logger.debug(f"[{severity}] {event_type} bot={bot_id}: {message}")
        return event

    def get_recent(
        self,
        bot_id: int,
        limit: int = 20,
        event_type: Optional[str] = None,
    ) -> List[BotEvent]:
        statement = select(BotEvent).where(BotEvent.bot_id == bot_id)
        if event_type:
            statement = statement.where(BotEvent.event_type == event_type)
        statement = statement.order_by(BotEvent.created_at.desc(), BotEvent.id.desc()).limit(limit)
        return list(self.session.exec(statement).all())
