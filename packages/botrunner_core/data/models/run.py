# packages/botrunner_core/data/models/run.py
"""
Run model - one lifecycle attempt of a bot
"""
from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON
from typing import Optional, Dict, Any
from datetime import datetime


class Run(SQLModel, table=True):
    """
    A bot run carries the state-machine status plus the live arming and
    failure-tracking state, independently of the bot row.

    summary keys: live_failure_count, last_live_failure_at,
    circuit_breaker_triggered, circuit_breaker_reason
    """
    __tablename__ = "runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bots.id", index=True)
    user_id: str = Field(index=True)

    status: str = Field(default="stopped", index=True)
    mode: str = Field(default="paper")

    # Live arming
    live_armed: bool = Field(default=False)
    arm_token_hash: Optional[str] = None
    arm_requested_at: Optional[datetime] = None
    armed_at: Optional[datetime] = None

    summary: Optional[Dict[str, Any]] = Field(default_factory=dict, sa_column=Column(JSON))

    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    last_tick_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
