"""
Risk gate tests
"""
from datetime import datetime, timedelta

import pytest

from botrunner_core.data.repositories.order import OrderRepository
from botrunner_core.data.repositories.position import PositionRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.services.risk_monitor import RiskMonitor, evaluate_risk
from botrunner_core.trading.state import RiskInputs
from conftest import T0, USER_ID, make_decision, make_tick


def inputs(**overrides) -> RiskInputs:
    values = dict(
        mode="paper",
        current_capital=10000.0,
        daily_pnl=0.0,
        max_daily_loss=100.0,
        max_position_size=0.1,
        stop_loss_pct=2.0,
        trades_last_hour=0,
        max_trades_per_hour=5,
        live_trading_enabled=True,
    )
    values.update(overrides)
    return RiskInputs(**values)


class TestEvaluateRisk:

    def test_clean_trade_allowed(self):
        result = evaluate_risk(make_decision(size=0.01), inputs())
        assert result.allowed
        assert result.flags == []

    def test_all_failures_reported(self):
        result = evaluate_risk(
            make_decision(size=1.0),
            inputs(daily_pnl=-150.0, stop_loss_pct=0.0, trades_last_hour=5, cooldown_active=True,
                   loss_streak_exceeded=True),
        )
        assert not result.allowed
        assert result.flags == [
            "DAILY_LOSS_LIMIT_EXCEEDED",
            "POSITION_SIZE_EXCEEDED",
            "STOP_LOSS_REQUIRED",
            "TRADE_FREQUENCY_LIMIT_EXCEEDED",
            "COOLDOWN_ACTIVE",
            "LOSS_STREAK_LIMIT_EXCEEDED",
        ]

    def test_exit_not_capped_by_position_size(self):
        # a position opened at the cap is worth more than the cap after a gain
        exit_decision = make_decision(side="sell", size=0.02, entry=53000.0).model_copy(update={"reduce_only": True})
        assert evaluate_risk(exit_decision, inputs()).allowed
        assert "POSITION_SIZE_EXCEEDED" in evaluate_risk(make_decision(size=0.02, entry=53000.0), inputs()).flags

    def test_daily_loss_at_limit_is_allowed(self):
        assert evaluate_risk(make_decision(), inputs(daily_pnl=-100.0)).allowed

    def test_live_only_flags_ignored_in_paper(self):
        result = evaluate_risk(
            make_decision(),
            inputs(live_trading_enabled=False, kill_switch_active=True, market_data_fresh=False,
                   ai_confidence_ok=False),
        )
        assert result.allowed

    def test_live_flags(self):
        result = evaluate_risk(
            make_decision(),
            inputs(mode="live", live_trading_enabled=False, kill_switch_active=True,
                   market_data_fresh=False, ai_confidence_ok=False),
        )
        assert result.flags == [
            "LIVE_TRADING_DISABLED",
            "KILL_SWITCH_ACTIVE",
            "MARKET_DATA_STALE",
            "AI_CONFIDENCE_TOO_LOW",
        ]


class TestRiskMonitor:

    def _close_loss(self, session, bot, closed_at, pnl=-10.0):
        repo = PositionRepository(session)
        position = repo.open(bot_id=bot.id, user_id=USER_ID, symbol=bot.symbol, side="buy",
                             quantity=1.0, entry_price=100.0)
        repo.close(position, exit_price=90.0, realized_pnl=pnl, fee=0.0, exit_order_id=None)
        return repo.update(position, closed_at=closed_at)

    def test_trade_count_excludes_rejected(self, session, settings, paper_bot):
        repo = OrderRepository(session)
        for i, status in enumerate(["filled", "rejected", "filled", "canceled"]):
            repo.create(bot_id=paper_bot.id, user_id=USER_ID, client_order_id=f"c-{i}",
                        symbol="BTC/USD", side="buy", quantity=0.01, status=status)

        monitor = RiskMonitor(session, settings)
        assert monitor.count_recent_trades(paper_bot.id, now=datetime.now()) == 2

    def test_cooldown_after_recent_loss(self, session, settings, paper_bot):
        self._close_loss(session, paper_bot, closed_at=T0 - timedelta(minutes=10))
        streak, cooldown = RiskMonitor(session, settings).check_loss_state(paper_bot.id, T0)
        assert cooldown
        assert not streak

    def test_cooldown_expires(self, session, settings, paper_bot):
        self._close_loss(session, paper_bot, closed_at=T0 - timedelta(minutes=31))
        _, cooldown = RiskMonitor(session, settings).check_loss_state(paper_bot.id, T0)
        assert not cooldown

    def test_loss_streak(self, session, settings, paper_bot):
        for minutes in (300, 200, 100):
            self._close_loss(session, paper_bot, closed_at=T0 - timedelta(minutes=minutes))
        streak, _ = RiskMonitor(session, settings).check_loss_state(paper_bot.id, T0)
        assert streak

    def test_win_breaks_streak(self, session, settings, paper_bot):
        self._close_loss(session, paper_bot, closed_at=T0 - timedelta(minutes=300))
        self._close_loss(session, paper_bot, closed_at=T0 - timedelta(minutes=200))
        self._close_loss(session, paper_bot, closed_at=T0 - timedelta(minutes=100), pnl=25.0)
        streak, _ = RiskMonitor(session, settings).check_loss_state(paper_bot.id, T0)
        assert not streak

    def test_user_kill_switch_feeds_inputs(self, session, settings, make_bot):
        bot = make_bot(mode="live")
        UserProfileRepository(session).set_kill_switch(USER_ID, True)
        built = RiskMonitor(session, settings).build_inputs(bot, make_tick(source="fallback"), now=T0)
        assert built.kill_switch_active
        assert built.mode == "live"
        assert not built.market_data_fresh

    @pytest.mark.parametrize("system_switch", [True, False])
    def test_system_kill_switch(self, session, settings, paper_bot, system_switch):
        settings.KILL_SWITCH_ENABLED = system_switch
        built = RiskMonitor(session, settings).build_inputs(paper_bot, make_tick(), now=T0)
        assert built.kill_switch_active is system_switch
