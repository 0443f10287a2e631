"""
Run lifecycle state machine tests
"""
from datetime import timedelta

import pytest

from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.errors import InvalidTransition, LiveStartBlocked
from botrunner_core.services.run_state_machine import RunStateMachine, RunStatus, next_status, settle
from conftest import T0, USER_ID


class TestTransitionTable:

    @pytest.mark.parametrize("current, action, expected", [
        ("stopped", "start", RunStatus.STARTING),
        ("running", "pause", RunStatus.PAUSING),
        ("running", "stop", RunStatus.STOPPING),
        ("paused", "start", RunStatus.STARTING),
        ("paused", "stop", RunStatus.STOPPING),
        ("stopping", "kill", RunStatus.KILL_SWITCHED),
    ])
    def test_allowed(self, current, action, expected):
        assert next_status(current, action) == expected

    @pytest.mark.parametrize("current, action", [
        ("stopped", "pause"),
        ("stopped", "stop"),
        ("running", "start"),
        ("paused", "pause"),
        ("killed", "start"),
        ("killed", "kill"),
        ("bogus", "start"),
    ])
    def test_rejected(self, current, action):
        with pytest.raises(InvalidTransition):
            next_status(current, action)

    def test_settle(self):
        assert settle(RunStatus.STARTING) == RunStatus.RUNNING
        assert settle(RunStatus.PAUSING) == RunStatus.PAUSED
        assert settle(RunStatus.STOPPING) == RunStatus.STOPPED
        assert settle(RunStatus.KILL_SWITCHED) == RunStatus.KILL_SWITCHED


class TestRunStateMachine:

    @pytest.fixture
    def machine(self, session, settings):
        return RunStateMachine(session, settings)

    @pytest.fixture
    def run_repo(self, session):
        return RunRepository(session)

    def test_start_settles_running_and_mirrors_bot(self, session, machine, run_repo, paper_bot):
        run = run_repo.create(paper_bot.id, USER_ID, "paper")
        run = machine.transition(paper_bot, run, "start", now=T0, trace_id="t-start")

        assert run.status == "running"
        assert run.started_at == T0
        assert paper_bot.status == "running"
        assert paper_bot.last_heartbeat_at == T0

        event = BotEventRepository(session).get_recent(paper_bot.id, event_type="start")[0]
        assert event.trace_id == "t-start"
        assert event.payload["previous_status"] == "stopped"
        assert event.payload["transition_state"] == "starting"
        assert event.payload["final_status"] == "running"

    def test_pause_then_stop(self, machine, run_repo, paper_bot):
        run = machine.transition(paper_bot, run_repo.create(paper_bot.id, USER_ID, "paper"), "start", now=T0)
        run = machine.transition(paper_bot, run, "pause")
        assert run.status == "paused"
        assert paper_bot.status == "paused"

        run = machine.transition(paper_bot, run, "stop", now=T0 + timedelta(minutes=5))
        assert run.status == "stopped"
        assert run.ended_at == T0 + timedelta(minutes=5)
        assert paper_bot.status == "stopped"

    def test_invalid_transition_writes_nothing(self, session, machine, run_repo, paper_bot):
        run = run_repo.create(paper_bot.id, USER_ID, "paper")
        with pytest.raises(InvalidTransition):
            machine.transition(paper_bot, run, "pause")
        assert run_repo.get_by_id(run.id).status == "stopped"
        assert BotEventRepository(session).get_recent(paper_bot.id) == []

    def test_kill_is_absorbing(self, machine, run_repo, paper_bot):
        run = machine.transition(paper_bot, run_repo.create(paper_bot.id, USER_ID, "paper"), "start")
        run = machine.transition(paper_bot, run, "kill")
        assert run.status == "killed"
        assert paper_bot.status == "stopped"
        assert paper_bot.last_error == "Kill switch engaged"

        with pytest.raises(InvalidTransition):
            machine.transition(paper_bot, run, "start")

    def test_kill_consumes_arming(self, machine, run_repo, live_bot):
        run = run_repo.create(live_bot.id, USER_ID, "live", status="running")
        run = run_repo.update(run, live_armed=True, armed_at=T0, arm_token_hash="abc")
        run = machine.transition(live_bot, run, "kill", now=T0)
        assert not run.live_armed
        assert run.arm_token_hash is None


class TestLiveStartGates:

    @pytest.fixture
    def machine(self, session, settings):
        return RunStateMachine(session, settings)

    @pytest.fixture
    def paused_live_run(self, session, live_bot):
        return RunRepository(session).create(live_bot.id, USER_ID, "live", status="paused")

    def test_unarmed_run_blocked(self, machine, live_bot, paused_live_run):
        with pytest.raises(LiveStartBlocked) as exc_info:
            machine.transition(live_bot, paused_live_run, "start", now=T0)
        assert exc_info.value.code == "LIVE_NOT_ARMED"
        assert exc_info.value.reasons == ["LIVE_NOT_ARMED"]

    def test_all_blockers_listed(self, session, settings, machine, live_bot, paused_live_run):
        settings.LIVE_TRADING_ENABLED = False
        UserProfileRepository(session).set_kill_switch(USER_ID, True)
        with pytest.raises(LiveStartBlocked) as exc_info:
            machine.transition(live_bot, paused_live_run, "start", now=T0)
        assert exc_info.value.code == "LIVE_TRADING_DISABLED"
        assert exc_info.value.reasons == ["LIVE_TRADING_DISABLED", "KILL_SWITCH_ACTIVE", "LIVE_NOT_ARMED"]

    def test_cooldown_boundary(self, session, machine, live_bot, paused_live_run):
        run = RunRepository(session).update(paused_live_run, live_armed=True, armed_at=T0)

        with pytest.raises(LiveStartBlocked) as exc_info:
            machine.transition(live_bot, run, "start", now=T0 + timedelta(seconds=59))
        assert exc_info.value.code == "LIVE_COOLDOWN_ACTIVE"

        run = machine.transition(live_bot, run, "start", now=T0 + timedelta(seconds=60))
        assert run.status == "running"

    def test_bot_level_start_skips_arming(self, machine, live_bot, paused_live_run):
        run = machine.transition(live_bot, paused_live_run, "start", now=T0, require_arming=False)
        assert run.status == "running"
        assert run.mode == "live"

    def test_paper_start_ignores_live_gates(self, session, settings, machine, paper_bot):
        settings.LIVE_TRADING_ENABLED = False
        settings.KILL_SWITCH_ENABLED = True
        run = RunRepository(session).create(paper_bot.id, USER_ID, "paper")
        assert machine.transition(paper_bot, run, "start").status == "running"
