# packages/botrunner_core/services/signal.py
"""
Baseline signal generator

Deterministic: the 24h price change is compared with a strategy specific
threshold; confidence scales with the move up to ``max_signal_strength``.
"""
from typing import Optional

from botrunner_core.trading.state import MarketTick, Signal, StrategyConfig


STRATEGY_CONFIGS = {
    "trend_following": StrategyConfig(signal_threshold=0.02, max_signal_strength=0.08),
    "mean_reversion": StrategyConfig(signal_threshold=0.025, max_signal_strength=0.08),
    "breakout": StrategyConfig(signal_threshold=0.02, max_signal_strength=0.06),
}


def get_strategy_config(strategy_id: str) -> StrategyConfig:
    """Unknown strategies use the trend_following parameters"""
    return STRATEGY_CONFIGS.get(strategy_id, STRATEGY_CONFIGS["trend_following"])


def generate_signal(tick: MarketTick, config: StrategyConfig) -> Optional[Signal]:
    normalized_change = tick.change_24h / 100
    confidence = min(abs(normalized_change) / config.max_signal_strength, 1.0)

    if normalized_change >= config.signal_threshold:
        return Signal(
            symbol=tick.symbol,
            side="buy",
            confidence=confidence,
            features_used=["change_24h"],
            rationale=f"24h change {tick.change_24h:.2f}% exceeds threshold",
        )

    if normalized_change <= -config.signal_threshold:
        return Signal(
            symbol=tick.symbol,
            side="sell",
            confidence=confidence,
            features_used=["change_24h"],
            rationale=f"24h change {tick.change_24h:.2f}% below threshold",
        )

    return None
