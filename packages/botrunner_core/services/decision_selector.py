# packages/botrunner_core/services/decision_selector.py
"""
决策选择

AI advice wins when it is actionable and confident enough; otherwise the
deterministic baseline signal; otherwise no trade.
"""
from typing import Optional, Tuple

from botrunner_core.data.models.bot import Bot
from botrunner_core.services.signal import generate_signal, get_strategy_config
from botrunner_core.trading.state import AIAdvice, MarketTick, StrategyDecisionResult, TradeDecision
from botrunner_core.utils import get_logger

logger = get_logger("decision_selector")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def protective_prices(side: str, entry: float, stop_loss_pct: float, take_profit_pct: float) -> Tuple[float, float]:
    """(stop, take_profit) mirrored around entry by side"""
    if side == "buy":
        return entry * (1 - stop_loss_pct / 100), entry * (1 + take_profit_pct / 100)
    return entry * (1 + stop_loss_pct / 100), entry * (1 - take_profit_pct / 100)


def _ai_decision(
    bot: Bot, tick: MarketTick, advice: AIAdvice, trace_id: str, run_id: Optional[int]
) -> Optional[TradeDecision]:
    confidence = clamp(advice.confidence / 100, 0.0, 1.0)
    position_pct = clamp(advice.position_size, 0.0, 10.0)
    stop_loss_pct = clamp(advice.stop_loss, 1.0, 20.0)
    take_profit_pct = clamp(advice.take_profit, 1.0, 50.0)

    quantity = bot.current_capital * position_pct / 100 / tick.price
    if quantity <= 0 or confidence <= 0:
        return None

    side = "buy" if advice.action == "BUY" else "sell"
    stop, take_profit = protective_prices(side, tick.price, stop_loss_pct, take_profit_pct)
    return TradeDecision(
        symbol=tick.symbol,
        side=side,
        size=quantity,
        entry=tick.price,
        stop=stop,
        take_profit=take_profit,
        confidence=confidence,
        rationale=f"AI: {advice.reasoning}",
        trace_id=trace_id,
        run_id=run_id,
    )


def _baseline_decision(
    bot: Bot, tick: MarketTick, trace_id: str, run_id: Optional[int]
) -> Optional[TradeDecision]:
    signal = generate_signal(tick, get_strategy_config(bot.strategy_id))
    if signal is None:
        return None

    quantity = bot.current_capital * bot.max_position_size * signal.confidence / tick.price
    if quantity <= 0:
        return None

    stop, take_profit = protective_prices(signal.side, tick.price, bot.stop_loss_pct, bot.take_profit_pct)
    return TradeDecision(
        symbol=tick.symbol,
        side=signal.side,
        size=quantity,
        entry=tick.price,
        stop=stop,
        take_profit=take_profit,
        confidence=signal.confidence,
        rationale=signal.rationale,
        trace_id=trace_id,
        run_id=run_id,
    )


def select_decision(
    bot: Bot,
    tick: MarketTick,
    advice: Optional[AIAdvice],
    confidence_threshold: float,
    trace_id: str,
    run_id: Optional[int] = None,
) -> StrategyDecisionResult:
    ai_confidence_ok = advice is None or advice.confidence / 100 >= confidence_threshold

    if tick.price <= 0:
        logger.warning(f"⚠️ {tick.symbol}: no usable price, skipping decision")
        return StrategyDecisionResult(source="none", rationale="No price", ai_confidence_ok=ai_confidence_ok)

    if advice is not None and advice.action != "HOLD":
        decision = _ai_decision(bot, tick, advice, trace_id, run_id)
        if decision is not None and decision.confidence >= confidence_threshold:
            return StrategyDecisionResult(
                decision=decision, source="ai", rationale=decision.rationale, ai_confidence_ok=ai_confidence_ok
            )
        logger.info(f"🔍 AI advice for {tick.symbol} not actionable (confidence {advice.confidence:.0f}), using baseline")

    decision = _baseline_decision(bot, tick, trace_id, run_id)
    if decision is not None:
        return StrategyDecisionResult(
            decision=decision, source="baseline", rationale=decision.rationale, ai_confidence_ok=ai_confidence_ok
        )

    return StrategyDecisionResult(source="none", rationale="No signal", ai_confidence_ok=ai_confidence_ok)
