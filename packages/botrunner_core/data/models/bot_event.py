# packages/botrunner_core/data/models/bot_event.py
"""
Audit event log
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON
from typing import Optional, Dict, Any
from datetime import datetime


class BotEvent(SQLModel, table=True):
    """
    One auditable event.

    event_type: start, pause, stop, kill, config_change, tick, heartbeat,
                order, fill, risk_alert, error
    severity:   debug, info, warn, error, critical
    """
    __tablename__ = "bot_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    bot_id: Optional[int] = Field(default=None, foreign_key="bots.id", index=True)
    user_id: str = Field(index=True)
    run_id: Optional[int] = Field(default=None, foreign_key="runs.id")
    trace_id: Optional[str] = None

    event_type: str = Field(index=True)
    severity: str = Field(default="info")
    message: str
    payload: Optional[Dict[str, Any]] = Field(default_factory=dict, sa_column=Column(JSON))
    metrics: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.now, index=True)
