"""
Request bodies for the REST routes

Bot creation and updates reuse the core command models
(CreateBotCommand, BotChanges).
"""
from typing import Optional

from pydantic import BaseModel, Field

from botrunner_core.trading.commands import RunTransition
from botrunner_core.trading.state import TradingMode


class BotStartRequest(BaseModel):
    mode: Optional[TradingMode] = Field(default=None, description="paper or live; defaults to the bot mode")


class RunCreateRequest(BaseModel):
    bot_id: int
    mode: Optional[TradingMode] = None


class TransitionRequest(BaseModel):
    action: RunTransition
    mode: Optional[TradingMode] = None


class ConfirmArmRequest(BaseModel):
    token: str = Field(min_length=1)


class KillSwitchRequest(BaseModel):
    enabled: bool
