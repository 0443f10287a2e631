"""
Decision selection tests (AI advice vs baseline signal)
"""
import pytest

from botrunner_core.services.decision_selector import clamp, protective_prices, select_decision
from botrunner_core.trading.state import AIAdvice
from conftest import make_tick

THRESHOLD = 0.55


def advice(action="BUY", confidence=80.0, position_size=5.0, stop_loss=3.0, take_profit=6.0):
    return AIAdvice(action=action, confidence=confidence, position_size=position_size,
                    stop_loss=stop_loss, take_profit=take_profit, reasoning="momentum")


class TestSelectDecision:

    def test_confident_ai_wins(self, paper_bot):
        result = select_decision(paper_bot, make_tick(change_24h=5.0), advice(), THRESHOLD, "t1", run_id=7)

        assert result.source == "ai"
        assert result.ai_confidence_ok
        decision = result.decision
        assert decision.side == "buy"
        assert decision.size == pytest.approx(0.01)
        assert decision.stop == pytest.approx(48500.0)
        assert decision.take_profit == pytest.approx(53000.0)
        assert decision.confidence == pytest.approx(0.8)
        assert decision.run_id == 7
        assert decision.trace_id == "t1"

    def test_ai_sell_mirrors_protection(self, paper_bot):
        result = select_decision(paper_bot, make_tick(), advice(action="sell"), THRESHOLD, "t1")
        assert result.decision.side == "sell"
        assert result.decision.stop > result.decision.entry > result.decision.take_profit

    def test_ai_inputs_clamped(self, paper_bot):
        result = select_decision(
            paper_bot, make_tick(),
            advice(confidence=150.0, position_size=50.0, stop_loss=0.1, take_profit=90.0),
            THRESHOLD, "t1",
        )
        decision = result.decision
        assert decision.confidence == 1.0
        assert decision.size == pytest.approx(0.02)
        assert decision.stop == pytest.approx(49500.0)
        assert decision.take_profit == pytest.approx(75000.0)

    def test_low_confidence_ai_falls_back_to_baseline(self, paper_bot):
        result = select_decision(paper_bot, make_tick(change_24h=5.0), advice(confidence=30.0), THRESHOLD, "t1")

        assert result.source == "baseline"
        assert not result.ai_confidence_ok
        assert result.decision.confidence == pytest.approx(0.625)
        # baseline uses the bot's own protection
        assert result.decision.stop == pytest.approx(49000.0)
        assert result.decision.take_profit == pytest.approx(52500.0)

    def test_low_confidence_ai_without_signal(self, paper_bot):
        result = select_decision(paper_bot, make_tick(change_24h=0.5), advice(confidence=30.0), THRESHOLD, "t1")
        assert result.source == "none"
        assert result.decision is None
        assert not result.ai_confidence_ok

    def test_hold_uses_baseline(self, paper_bot):
        result = select_decision(paper_bot, make_tick(change_24h=-4.0), advice(action="HOLD", confidence=90.0),
                                 THRESHOLD, "t1")
        assert result.source == "baseline"
        assert result.decision.side == "sell"
        assert result.ai_confidence_ok

    def test_zero_size_ai_is_not_actionable(self, paper_bot):
        result = select_decision(paper_bot, make_tick(), advice(position_size=0.0), THRESHOLD, "t1")
        assert result.source == "none"

    def test_baseline_size_scales_with_confidence(self, paper_bot):
        result = select_decision(paper_bot, make_tick(change_24h=8.0), None, THRESHOLD, "t1")
        # capital 10000 * max_position_size 0.1 * confidence 1.0 / price
        assert result.decision.size == pytest.approx(0.02)

    def test_no_price(self, paper_bot):
        result = select_decision(paper_bot, make_tick(price=0.0, change_24h=5.0), None, THRESHOLD, "t1")
        assert result.source == "none"
        assert result.rationale == "No price"


def test_clamp():
    assert clamp(5, 1, 3) == 3
    assert clamp(-1, 0, 3) == 0
    assert clamp(2, 1, 3) == 2


def test_protective_prices():
    assert protective_prices("buy", 100.0, 2.0, 5.0) == pytest.approx((98.0, 105.0))
    assert protective_prices("sell", 100.0, 2.0, 5.0) == pytest.approx((102.0, 95.0))
