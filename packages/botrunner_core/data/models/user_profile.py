# packages/botrunner_core/data/models/user_profile.py
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class UserProfile(SQLModel, table=True):
    """Per-user flags; holds the user's global kill switch"""
    __tablename__ = "user_profiles"

    user_id: str = Field(primary_key=True)
    global_kill_switch: bool = Field(default=False)
    kill_switch_activated_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
