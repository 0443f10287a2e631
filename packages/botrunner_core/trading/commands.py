"""
Typed control commands

One model per control operation; ``ControlCommand`` is the discriminated
union on ``action`` accepted by ControlService.dispatch and POST /control.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from botrunner_core.trading.state import TradingMode


RunTransition = Literal["start", "pause", "stop", "kill"]


# -------------------------
# Bot
# -------------------------

class CreateBotCommand(BaseModel):
    action: Literal["create_bot"] = "create_bot"
    name: str = Field(min_length=1, max_length=100)
    symbol: str = "BTC/USD"
    mode: TradingMode = "paper"
    strategy_id: str = "trend_following"
    strategy_config: Dict[str, Any] = Field(default_factory=dict)
    max_position_size: float = Field(default=0.1, gt=0, le=1)
    max_daily_loss: float = Field(default=100.0, gt=0)
    stop_loss_pct: float = Field(default=2.0, ge=0, le=100)
    take_profit_pct: float = Field(default=5.0, ge=0)
    max_leverage: int = Field(default=1, ge=1, le=100)
    initial_capital: float = Field(default=10000.0, gt=0)
    api_key_id: Optional[int] = None


class StartBotCommand(BaseModel):
    action: Literal["start_bot"] = "start_bot"
    bot_id: int
    mode: Optional[TradingMode] = None


class PauseBotCommand(BaseModel):
    action: Literal["pause_bot"] = "pause_bot"
    bot_id: int


class StopBotCommand(BaseModel):
    action: Literal["stop_bot"] = "stop_bot"
    bot_id: int


class KillBotCommand(BaseModel):
    action: Literal["kill_bot"] = "kill_bot"
    bot_id: int


class BotChanges(BaseModel):
    """Fields a user may change on an existing bot"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    symbol: Optional[str] = None
    strategy_id: Optional[str] = None
    strategy_config: Optional[Dict[str, Any]] = None
    max_position_size: Optional[float] = Field(default=None, gt=0, le=1)
    max_daily_loss: Optional[float] = Field(default=None, gt=0)
    stop_loss_pct: Optional[float] = Field(default=None, ge=0, le=100)
    take_profit_pct: Optional[float] = Field(default=None, ge=0)
    max_leverage: Optional[int] = Field(default=None, ge=1, le=100)
    api_key_id: Optional[int] = None


class UpdateBotCommand(BaseModel):
    action: Literal["update_bot"] = "update_bot"
    bot_id: int
    changes: BotChanges


class DeleteBotCommand(BaseModel):
    action: Literal["delete_bot"] = "delete_bot"
    bot_id: int


class BotStatusCommand(BaseModel):
    action: Literal["bot_status"] = "bot_status"
    bot_id: int


# -------------------------
# Live
# -------------------------

class RequestArmCommand(BaseModel):
    action: Literal["request_arm"] = "request_arm"
    bot_id: int


class ConfirmArmCommand(BaseModel):
    action: Literal["confirm_arm"] = "confirm_arm"
    bot_id: int
    token: str = Field(min_length=1)


class SetKillSwitchCommand(BaseModel):
    action: Literal["set_kill_switch"] = "set_kill_switch"
    enabled: bool


class LiveStatusCommand(BaseModel):
    action: Literal["live_status"] = "live_status"
    bot_id: int


# -------------------------
# Run
# -------------------------

class CreateRunCommand(BaseModel):
    action: Literal["create_run"] = "create_run"
    bot_id: int
    mode: Optional[TradingMode] = None


class RequestTransitionCommand(BaseModel):
    action: Literal["request_transition"] = "request_transition"
    bot_id: int
    transition: RunTransition
    mode: Optional[TradingMode] = None


class RunOneTickCommand(BaseModel):
    action: Literal["run_one_tick"] = "run_one_tick"
    bot_id: int


ControlCommand = Annotated[
    Union[
        CreateBotCommand,
        StartBotCommand,
        PauseBotCommand,
        StopBotCommand,
        KillBotCommand,
        UpdateBotCommand,
        DeleteBotCommand,
        BotStatusCommand,
        RequestArmCommand,
        ConfirmArmCommand,
        SetKillSwitchCommand,
        LiveStatusCommand,
        CreateRunCommand,
        RequestTransitionCommand,
        RunOneTickCommand,
    ],
    Field(discriminator="action"),
]


class CommandResult(BaseModel):
    """Mutated entity (or snapshot) plus the trace id of the operation"""
    action: str
    trace_id: str
    message: str = ""
    data: Any = None
