# packages/botrunner_core/services/run_state_machine.py
"""
Run lifecycle state machine

An action first moves the run to a transitional state (STARTING, PAUSING,
STOPPING) which then settles (RUNNING, PAUSED, STOPPED). KILL_SWITCHED is
absorbing. Any action missing from TRANSITIONS raises InvalidTransition
before anything is written.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Literal, Optional

from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.models.run import Run
from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.errors import InvalidTransition, LiveStartBlocked
from botrunner_core.services.live_gates import live_start_blockers
from botrunner_core.utils import get_logger

logger = get_logger("run_state_machine")


class RunStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSING = "pausing"
    PAUSED = "paused"
    STOPPING = "stopping"
    KILL_SWITCHED = "killed"


RunAction = Literal["start", "pause", "stop", "kill"]

TRANSITIONS: Dict[RunStatus, Dict[str, RunStatus]] = {
    RunStatus.STOPPED: {"start": RunStatus.STARTING, "kill": RunStatus.KILL_SWITCHED},
    RunStatus.STARTING: {"stop": RunStatus.STOPPING, "kill": RunStatus.KILL_SWITCHED},
    RunStatus.RUNNING: {"pause": RunStatus.PAUSING, "stop": RunStatus.STOPPING, "kill": RunStatus.KILL_SWITCHED},
    RunStatus.PAUSING: {"stop": RunStatus.STOPPING, "kill": RunStatus.KILL_SWITCHED},
    RunStatus.PAUSED: {"start": RunStatus.STARTING, "stop": RunStatus.STOPPING, "kill": RunStatus.KILL_SWITCHED},
    RunStatus.STOPPING: {"kill": RunStatus.KILL_SWITCHED},
    RunStatus.KILL_SWITCHED: {},
}

SETTLED: Dict[RunStatus, RunStatus] = {
    RunStatus.STARTING: RunStatus.RUNNING,
    RunStatus.PAUSING: RunStatus.PAUSED,
    RunStatus.STOPPING: RunStatus.STOPPED,
    RunStatus.KILL_SWITCHED: RunStatus.KILL_SWITCHED,
}

# bot.status mirrored after each settled transition
BOT_STATUS_FOR: Dict[RunStatus, str] = {
    RunStatus.RUNNING: "running",
    RunStatus.PAUSED: "paused",
    RunStatus.STOPPED: "stopped",
    RunStatus.KILL_SWITCHED: "stopped",
}


def next_status(current, action: str) -> RunStatus:
    """Pure transition function"""
    try:
        current_status = RunStatus(current)
    except ValueError:
        raise InvalidTransition(str(current), action)

    nxt = TRANSITIONS[current_status].get(action)
    if nxt is None:
        raise InvalidTransition(current_status.value, action)
    return nxt


def settle(status: RunStatus) -> RunStatus:
    return SETTLED.get(status, status)


class RunStateMachine:
    """Validates and applies run transitions, mirroring the bot status"""

    def __init__(self, session: Session, settings: TradingSettings):
        self.settings = settings
        self.bot_repo = BotRepository(session)
        self.run_repo = RunRepository(session)
        self.event_repo = BotEventRepository(session)
        self.profile_repo = UserProfileRepository(session)

    def transition(
        self,
        bot: Bot,
        run: Run,
        action: str,
        mode: Optional[str] = None,
        now: Optional[datetime] = None,
        require_arming: bool = True,
        trace_id: Optional[str] = None,
    ) -> Run:
        """
        Apply ``action`` to ``run``.

        Args:
            mode: target mode, defaults to the run's mode
            require_arming: live starts need an armed run past its cooldown.
                Only the bot-level start (bringing a bot online) passes False.

        Raises:
            InvalidTransition: action not allowed from the current state
            LiveStartBlocked: live start refused by a gate; ``code`` is the first reason
        """
        now = now or datetime.now()
        previous = run.status
        transitional = next_status(previous, action)
        target_mode = mode or run.mode

        if action == "start" and target_mode == "live":
            reasons = live_start_blockers(
                run,
                live_trading_enabled=self.settings.LIVE_TRADING_ENABLED,
                kill_switch_active=(
                    self.settings.KILL_SWITCH_ENABLED
                    or self.profile_repo.is_kill_switch_active(bot.user_id)
                ),
                cooldown_seconds=self.settings.LIVE_ARM_COOLDOWN_SECONDS,
                now=now,
                require_arming=require_arming,
            )
            if reasons:
                logger.warning(f"⚠️ Live start blocked for bot {bot.id}: {reasons}")
                blocked = LiveStartBlocked(f"Live start blocked: {', '.join(reasons)}", code=reasons[0])
                blocked.reasons = reasons
                raise blocked

        final = settle(transitional)
        changes = {"status": final.value, "mode": target_mode}
        if final == RunStatus.RUNNING:
            changes["started_at"] = run.started_at or now
            changes["last_tick_at"] = now
            changes["ended_at"] = None
        elif final == RunStatus.STOPPED:
            changes["ended_at"] = now
        elif final == RunStatus.KILL_SWITCHED:
            # a kill always consumes the arming
            changes.update(live_armed=False, arm_token_hash=None, ended_at=now)
        run = self.run_repo.update(run, **changes)

        bot_changes = {"status": BOT_STATUS_FOR[final], "mode": target_mode}
        if final == RunStatus.RUNNING:
            bot_changes["last_heartbeat_at"] = now
        if final == RunStatus.KILL_SWITCHED:
            bot_changes["last_error"] = "Kill switch engaged"
        self.bot_repo.update(bot, **bot_changes)

        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run.id,
            trace_id=trace_id,
            event_type=action,
            severity="critical" if final == RunStatus.KILL_SWITCHED else "info",
            message=f"Run transitioned to {final.value}",
            payload={
                "run_id": run.id,
                "previous_status": previous,
                "transition_state": transitional.value,
                "final_status": final.value,
                "mode": target_mode,
            },
        )
        logger.info(f"✅ Run {run.id} (bot {bot.id}): {previous} -[{action}]-> {transitional.value} -> {final.value}")
        return run
