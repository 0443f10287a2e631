"""
Live arming and kill switch tests
"""
from datetime import timedelta

import pytest

from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.errors import ArmingError
from botrunner_core.services.arming import ArmingService, hash_token
from botrunner_core.services.live_gates import evaluate_live_eligibility
from conftest import T0, USER_ID


@pytest.fixture
def arming(session, settings):
    return ArmingService(session, settings)


@pytest.fixture
def running_live(session, live_bot):
    """Live bot brought online (running, not armed)"""
    run = RunRepository(session).create(live_bot.id, USER_ID, "live", status="running")
    BotRepository(session).update(live_bot, status="running")
    return live_bot, run


class TestRequestArm:

    def test_token_returned_once_hash_stored(self, session, arming, running_live):
        bot, run = running_live
        result = arming.request_arm(bot, now=T0)

        stored = RunRepository(session).get_by_id(run.id)
        assert result["run_id"] == run.id
        assert len(result["token"]) == 32
        assert stored.arm_token_hash == hash_token(result["token"])
        assert stored.arm_token_hash != result["token"]
        assert not stored.live_armed

    def test_paper_bot_refused(self, arming, paper_bot):
        with pytest.raises(ArmingError) as exc_info:
            arming.request_arm(paper_bot)
        assert exc_info.value.code == "BOT_NOT_LIVE"

    def test_stopped_bot_refused(self, arming, live_bot):
        with pytest.raises(ArmingError) as exc_info:
            arming.request_arm(live_bot)
        assert exc_info.value.code == "BOT_NOT_RUNNING"


class TestConfirmArm:

    def test_confirm_arms_and_starts_cooldown(self, session, arming, running_live):
        bot, run = running_live
        token = arming.request_arm(bot, now=T0)["token"]
        result = arming.confirm_arm(bot, token, now=T0)

        assert result["live_armed"] is True
        assert result["cooldown_ends_at"] == T0 + timedelta(seconds=60)
        stored = RunRepository(session).get_by_id(run.id)
        assert stored.live_armed
        assert stored.armed_at == T0
        assert stored.arm_token_hash is None

    def test_wrong_token(self, session, arming, running_live):
        bot, run = running_live
        arming.request_arm(bot, now=T0)
        with pytest.raises(ArmingError) as exc_info:
            arming.confirm_arm(bot, "not-the-token", now=T0)
        assert exc_info.value.code == "INVALID_ARM_TOKEN"
        assert not RunRepository(session).get_by_id(run.id).live_armed

    def test_token_single_use(self, arming, running_live):
        bot, _ = running_live
        token = arming.request_arm(bot, now=T0)["token"]
        arming.confirm_arm(bot, token, now=T0)
        with pytest.raises(ArmingError) as exc_info:
            arming.confirm_arm(bot, token, now=T0)
        assert exc_info.value.code == "NO_PENDING_ARM"

    def test_no_pending_request(self, arming, running_live):
        bot, _ = running_live
        with pytest.raises(ArmingError) as exc_info:
            arming.confirm_arm(bot, "anything")
        assert exc_info.value.code == "NO_PENDING_ARM"


class TestLiveStatus:

    def _armed(self, arming, running_live):
        bot, _ = running_live
        token = arming.request_arm(bot, now=T0)["token"]
        arming.confirm_arm(bot, token, now=T0)
        return bot

    def test_cooldown_one_second_before(self, arming, running_live):
        bot = self._armed(arming, running_live)
        status = arming.live_status(bot, now=T0 + timedelta(seconds=59))
        assert not status["eligible"]
        assert status["reasons"] == ["LIVE_COOLDOWN_ACTIVE"]

    def test_eligible_once_cooldown_elapsed(self, arming, running_live):
        bot = self._armed(arming, running_live)
        status = arming.live_status(bot, now=T0 + timedelta(seconds=61))
        assert status["eligible"]
        assert status["reasons"] == []
        assert status["live_armed"]

    def test_kill_switch_blocks(self, arming, running_live):
        bot = self._armed(arming, running_live)
        arming.set_kill_switch(USER_ID, True)
        status = arming.live_status(bot, now=T0 + timedelta(seconds=61))
        assert status["user_kill_switch"]
        assert status["reasons"] == ["KILL_SWITCH_ACTIVE"]

    def test_missing_credential(self, session, arming, make_bot):
        bot = make_bot(mode="live")
        status = arming.live_status(bot, now=T0)
        assert "SECRETS_NOT_CONFIGURED" in status["reasons"]
        assert "NO_ACTIVE_LIVE_RUN" in status["reasons"]


class TestKillSwitch:

    def test_toggle(self, session, arming):
        assert arming.set_kill_switch(USER_ID, True)["global_kill_switch"] is True
        assert UserProfileRepository(session).is_kill_switch_active(USER_ID)

        result = arming.set_kill_switch(USER_ID, False)
        assert result["global_kill_switch"] is False
        assert result["kill_switch_activated_at"] is None


def test_eligibility_without_run():
    eligibility = evaluate_live_eligibility(
        None, live_trading_enabled=True, kill_switch_active=False,
        secrets_ready=True, cooldown_seconds=60, now=T0,
    )
    assert not eligibility.allowed
    assert eligibility.reasons == ["NO_ACTIVE_LIVE_RUN", "LIVE_NOT_ARMED"]
    assert eligibility.cooldown_ends_at is None
