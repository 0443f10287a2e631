from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -------------------------
# Shared literals
# -------------------------

OrderSide = Literal["buy", "sell"]
TradingMode = Literal["paper", "live"]
ExecutionStatus = Literal["pending", "submitted", "filled", "rejected"]
DecisionSource = Literal["ai", "baseline", "none"]
MarketDataSource = Literal["exchange", "fallback"]


def opposite_side(side: str) -> OrderSide:
    return "sell" if side == "buy" else "buy"


# -------------------------
# Market data
# -------------------------

class Ticker(BaseModel):
    """Exchange ticker as returned by the adapter"""
    model_config = ConfigDict(extra="allow")

    symbol: str
    price: float
    bid: float
    ask: float
    volume: float = 0.0
    change_24h: float = 0.0  # percent


class MarketTick(BaseModel):
    """Market snapshot used for one tick"""

    symbol: str
    price: float
    bid: float
    ask: float
    volume: float = 0.0
    change_24h: float = 0.0
    source: MarketDataSource = "exchange"
    fetched_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_fresh(self) -> bool:
        """Only exchange data counts for live eligibility"""
        return self.source == "exchange"


# -------------------------
# Strategy
# -------------------------

class StrategyConfig(BaseModel):
    signal_threshold: float
    max_signal_strength: float


class Signal(BaseModel):
    symbol: str
    side: OrderSide
    confidence: float
    features_used: List[str] = Field(default_factory=list)
    rationale: str


class TradeDecision(BaseModel):
    """Candidate trade; transient, consumed by risk and execution"""

    symbol: str
    side: OrderSide
    size: float
    entry: float
    stop: float
    take_profit: float
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str
    trace_id: str
    run_id: Optional[int] = None
    # exits only shrink exposure, so the sizing cap does not apply
    reduce_only: bool = False

    @property
    def notional(self) -> float:
        return self.size * self.entry


class AIAdvice(BaseModel):
    """
    Structured answer from the AI advisor.

    confidence is 0-100; position_size, stop_loss and take_profit are percents.
    """

    action: Literal["BUY", "SELL", "HOLD"] = Field(description="BUY, SELL or HOLD")
    confidence: float = Field(description="Confidence from 0 to 100")
    position_size: float = Field(default=0.0, description="Position size as % of capital")
    stop_loss: float = Field(default=2.0, description="Stop loss distance in %")
    take_profit: float = Field(default=5.0, description="Take profit distance in %")
    reasoning: str = Field(default="", description="Short rationale")
    time_horizon: str = Field(default="short", description="Expected holding horizon")

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        return v.upper() if isinstance(v, str) else v


class StrategyDecisionResult(BaseModel):
    decision: Optional[TradeDecision] = None
    source: DecisionSource = "none"
    rationale: str = ""
    # False when the AI answered below the confidence threshold (live risk flag)
    ai_confidence_ok: bool = True


# -------------------------
# Risk
# -------------------------

class RiskInputs(BaseModel):
    """Account snapshot plus guardrail state for one decision"""

    mode: TradingMode = "paper"
    current_capital: float
    daily_pnl: float = 0.0
    max_daily_loss: float
    max_position_size: float
    max_leverage: float = 1.0
    stop_loss_pct: float
    trades_last_hour: int = 0
    max_trades_per_hour: int = 5
    cooldown_active: bool = False
    loss_streak_exceeded: bool = False
    kill_switch_active: bool = False
    live_trading_enabled: bool = False
    market_data_fresh: bool = True
    ai_confidence_ok: bool = True


class RiskCheckResult(BaseModel):
    allowed: bool
    flags: List[str] = Field(default_factory=list)


# -------------------------
# Execution
# -------------------------

class LiveEligibility(BaseModel):
    allowed: bool
    reasons: List[str] = Field(default_factory=list)
    cooldown_ends_at: Optional[datetime] = None


class ExecutionResult(BaseModel):
    """Common result of ExecutionEngine.execute_trade"""

    status: ExecutionStatus
    order_id: Optional[int] = None
    exchange_order_id: Optional[str] = None
    message: Optional[str] = None


class OrderPlacement(BaseModel):
    """Exchange adapter answer to place_order"""
    model_config = ConfigDict(extra="allow")

    success: bool
    exchange_order_id: Optional[str] = None
    status: Literal["submitted", "filled", "rejected"] = "rejected"
    filled: float = 0.0
    average: Optional[float] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


# -------------------------
# Orchestrator
# -------------------------

class BotTickResult(BaseModel):
    bot_id: int
    trace_id: str
    status: Literal["ok", "error"] = "ok"
    # waiting: an earlier order is still working on the exchange
    stage: Literal["idle", "exit", "entry", "waiting"] = "idle"
    decision_source: DecisionSource = "none"
    market_source: Optional[MarketDataSource] = None
    risk: Optional[RiskCheckResult] = None
    execution: Optional[ExecutionResult] = None
    error: Optional[str] = None


class TickSummary(BaseModel):
    processed: int = 0
    successful: int = 0
    failed: int = 0
    results: List[BotTickResult] = Field(default_factory=list)
