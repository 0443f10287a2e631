# packages/botrunner_core/services/circuit_breaker.py
"""
Live execution circuit breaker

Counts consecutive live failures in ``run.summary``. Reaching the threshold
engages the user's kill switch, stops the bot and kills the run. This is the
only automatic path that sets the kill switch.
"""
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.models.run import Run
from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.utils import get_logger

logger = get_logger("circuit_breaker")


class LiveCircuitBreaker:
    def __init__(self, session: Session, settings: TradingSettings):
        self.threshold = max(1, settings.LIVE_CIRCUIT_BREAKER_THRESHOLD)
        self.bot_repo = BotRepository(session)
        self.run_repo = RunRepository(session)
        self.event_repo = BotEventRepository(session)
        self.profile_repo = UserProfileRepository(session)

    def record_success(self, run: Run) -> Run:
        if (run.summary or {}).get("live_failure_count", 0):
            logger.info(f"✅ Run {run.id}: live failure counter reset")
        return self.run_repo.merge_summary(run, live_failure_count=0)

    def handle_live_failure(
        self,
        bot: Bot,
        run: Run,
        reason: str,
        trace_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Count one live failure.

        Returns:
            True when this failure tripped the breaker
        """
        if run.status == "killed":
            # already tripped (or killed by hand)
            return False

        now = now or datetime.now()
        failures = int((run.summary or {}).get("live_failure_count", 0)) + 1
        run = self.run_repo.merge_summary(
            run,
            live_failure_count=failures,
            last_live_failure_at=now.isoformat(),
        )
        logger.warning(f"⚠️ Bot {bot.id} run {run.id}: live failure {failures}/{self.threshold} ({reason})")

        if failures < self.threshold:
            return False

        self.profile_repo.set_kill_switch(bot.user_id, True, at=now)
        self.bot_repo.update(
            bot,
            status="stopped",
            last_error=f"Live circuit breaker triggered: {reason}",
        )
        run = self.run_repo.update(
            run,
            status="killed",
            live_armed=False,
            arm_token_hash=None,
            ended_at=now,
        )
        run = self.run_repo.merge_summary(
            run,
            circuit_breaker_triggered=True,
            circuit_breaker_reason=reason,
        )

        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run.id,
            trace_id=trace_id,
            event_type="risk_alert",
            severity="critical",
            message="Live circuit breaker triggered, kill switch engaged",
            payload={"reason": reason, "live_failure_count": failures, "threshold": self.threshold},
        )
        logger.critical(f"🚨 Live circuit breaker tripped for bot {bot.id}: {reason}")
        return True
