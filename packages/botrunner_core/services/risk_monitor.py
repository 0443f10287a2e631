# packages/botrunner_core/services/risk_monitor.py
"""
风险评估

- evaluate_risk(): pure gate applied to every candidate trade. Every check
  runs, so a rejection lists all failing flags.
- RiskMonitor: builds RiskInputs for a bot from the store (trade frequency,
  loss streak, post-loss cooldown, kill switches).
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.repositories.order import OrderRepository
from botrunner_core.data.repositories.position import PositionRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.trading.state import MarketTick, RiskCheckResult, RiskInputs, TradeDecision
from botrunner_core.utils import get_logger

logger = get_logger("risk_monitor")


def evaluate_risk(decision: TradeDecision, inputs: RiskInputs) -> RiskCheckResult:
    """Return allow/deny with itemized flags; never raises"""
    flags = []

    if inputs.mode == "live":
        if not inputs.live_trading_enabled:
            flags.append("LIVE_TRADING_DISABLED")
        if inputs.kill_switch_active:
            flags.append("KILL_SWITCH_ACTIVE")

    if inputs.daily_pnl < -inputs.max_daily_loss:
        flags.append("DAILY_LOSS_LIMIT_EXCEEDED")

    if not decision.reduce_only and decision.notional > inputs.current_capital * inputs.max_position_size:
        flags.append("POSITION_SIZE_EXCEEDED")

    if inputs.stop_loss_pct <= 0:
        flags.append("STOP_LOSS_REQUIRED")

    if inputs.trades_last_hour >= inputs.max_trades_per_hour:
        flags.append("TRADE_FREQUENCY_LIMIT_EXCEEDED")

    if inputs.cooldown_active:
        flags.append("COOLDOWN_ACTIVE")

    if inputs.loss_streak_exceeded:
        flags.append("LOSS_STREAK_LIMIT_EXCEEDED")

    if inputs.mode == "live":
        if not inputs.market_data_fresh:
            flags.append("MARKET_DATA_STALE")
        if not inputs.ai_confidence_ok:
            flags.append("AI_CONFIDENCE_TOO_LOW")

    if flags:
        logger.warning(f"⚠️ {decision.symbol} {decision.side}: risk flags {flags}")

    return RiskCheckResult(allowed=not flags, flags=flags)


class RiskMonitor:
    """Collects the guardrail state of a bot"""

    def __init__(self, session: Session, settings: TradingSettings):
        self.settings = settings
        self.order_repo = OrderRepository(session)
        self.position_repo = PositionRepository(session)
        self.profile_repo = UserProfileRepository(session)

    def is_kill_switch_active(self, user_id: str) -> bool:
        """System-wide or per-user kill switch"""
        return self.settings.KILL_SWITCH_ENABLED or self.profile_repo.is_kill_switch_active(user_id)

    def count_recent_trades(self, bot_id: int, now: datetime) -> int:
        window_start = now - timedelta(minutes=self.settings.TRADE_WINDOW_MINUTES)
        return self.order_repo.count_since(bot_id, window_start)

    def check_loss_state(self, bot_id: int, now: datetime):
        """
        检查连续亏损和亏损后的冷却期

        Returns:
            (loss_streak_exceeded, cooldown_active)
        """
        limit = self.settings.MAX_CONSECUTIVE_LOSSES
        recent = self.position_repo.get_recent_closed(bot_id, limit=limit)

        loss_streak_exceeded = len(recent) >= limit and all(
            (p.realized_pnl or 0) < 0 for p in recent
        )
        if loss_streak_exceeded:
            logger.error(f"🚨 Bot {bot_id}: {limit} consecutive losing trades")

        last_loss = next((p for p in recent if (p.realized_pnl or 0) < 0), None)
        cooldown_active = False
        if last_loss and last_loss.closed_at:
            cooldown = timedelta(minutes=self.settings.COOLDOWN_MINUTES_AFTER_LOSS)
            cooldown_active = now - last_loss.closed_at < cooldown

        return loss_streak_exceeded, cooldown_active

    def build_inputs(
        self,
        bot: Bot,
        tick: MarketTick,
        ai_confidence_ok: bool = True,
        now: Optional[datetime] = None,
    ) -> RiskInputs:
        now = now or datetime.now()
        loss_streak_exceeded, cooldown_active = self.check_loss_state(bot.id, now)
        is_live = bot.mode == "live"

        return RiskInputs(
            mode=bot.mode,
            current_capital=bot.current_capital,
            daily_pnl=bot.daily_pnl,
            max_daily_loss=bot.max_daily_loss,
            max_position_size=bot.max_position_size,
            max_leverage=bot.max_leverage,
            stop_loss_pct=bot.stop_loss_pct,
            trades_last_hour=self.count_recent_trades(bot.id, now),
            max_trades_per_hour=self.settings.MAX_TRADES_PER_HOUR,
            cooldown_active=cooldown_active,
            loss_streak_exceeded=loss_streak_exceeded,
            kill_switch_active=self.is_kill_switch_active(bot.user_id),
            live_trading_enabled=self.settings.LIVE_TRADING_ENABLED,
            market_data_fresh=tick.is_fresh if is_live else True,
            ai_confidence_ok=ai_confidence_ok if is_live else True,
        )
