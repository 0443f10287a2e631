# packages/botrunner_core/services/arming.py
"""
Live arming + kill switch

request_arm -> (plaintext token returned once, only the hash is stored)
confirm_arm -> live_armed=True, cooldown starts
"""
import hashlib
import hmac
import secrets
from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.exchange_credential import ExchangeCredentialRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.errors import ArmingError
from botrunner_core.services.live_gates import cooldown_ends_at, evaluate_live_eligibility
from botrunner_core.utils import get_logger

logger = get_logger("arming")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class ArmingService:
    def __init__(self, session: Session, settings: TradingSettings):
        self.settings = settings
        self.run_repo = RunRepository(session)
        self.event_repo = BotEventRepository(session)
        self.profile_repo = UserProfileRepository(session)
        self.credential_repo = ExchangeCredentialRepository(session)

    def request_arm(self, bot: Bot, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Issue a one-time arming token for the bot's active live run.

        Raises:
            ArmingError: BOT_NOT_LIVE / BOT_NOT_RUNNING / NO_ACTIVE_LIVE_RUN
        """
        now = now or datetime.now()
        if bot.mode != "live":
            raise ArmingError("Bot is not in live mode", code="BOT_NOT_LIVE")
        if bot.status != "running":
            raise ArmingError("Bot must be running to arm", code="BOT_NOT_RUNNING")

        run = self.run_repo.get_active_live(bot.id)
        if run is None:
            raise ArmingError("No active live run", code="NO_ACTIVE_LIVE_RUN")

        token = secrets.token_hex(16)
        run = self.run_repo.update(
            run,
            arm_token_hash=hash_token(token),
            arm_requested_at=now,
            live_armed=False,
        )

        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run.id,
            event_type="config_change",
            message="Live arming requested",
            payload={"run_id": run.id, "arm_requested_at": now.isoformat()},
        )
        logger.info(f"🔐 Arm requested for bot {bot.id} run {run.id}")
        return {"run_id": run.id, "token": token, "arm_requested_at": now}

    def confirm_arm(self, bot: Bot, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Raises:
            ArmingError: NO_ACTIVE_LIVE_RUN / NO_PENDING_ARM / INVALID_ARM_TOKEN
        """
        now = now or datetime.now()
        run = self.run_repo.get_active_live(bot.id)
        if run is None:
            raise ArmingError("No active live run", code="NO_ACTIVE_LIVE_RUN")
        if not run.arm_token_hash:
            raise ArmingError("No pending arm request", code="NO_PENDING_ARM")

        if not hmac.compare_digest(run.arm_token_hash, hash_token(token or "")):
            logger.warning(f"⚠️ Invalid arm token for bot {bot.id} run {run.id}")
            raise ArmingError("Invalid arm token", code="INVALID_ARM_TOKEN")

        run = self.run_repo.update(run, live_armed=True, armed_at=now, arm_token_hash=None)
        ends_at = cooldown_ends_at(run, self.settings.LIVE_ARM_COOLDOWN_SECONDS)

        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run.id,
            event_type="config_change",
            severity="warn",
            message="Live trading armed",
            payload={"run_id": run.id, "armed_at": now.isoformat(), "cooldown_ends_at": ends_at.isoformat()},
        )
        logger.warning(f"⚠️ Bot {bot.id} armed for live trading, cooldown until {ends_at.isoformat()}")
        return {"run_id": run.id, "live_armed": True, "armed_at": now, "cooldown_ends_at": ends_at}

    def set_kill_switch(self, user_id: str, enabled: bool, now: Optional[datetime] = None) -> Dict[str, Any]:
        profile = self.profile_repo.set_kill_switch(user_id, enabled, at=now or datetime.now())
        self.event_repo.log(
            user_id=user_id,
            event_type="config_change",
            severity="critical" if enabled else "info",
            message=f"Kill switch {'enabled' if enabled else 'disabled'}",
            payload={"global_kill_switch": enabled},
        )
        return {
            "global_kill_switch": profile.global_kill_switch,
            "kill_switch_activated_at": profile.kill_switch_activated_at,
        }

    def live_status(self, bot: Bot, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Snapshot of every live gate for the bot"""
        now = now or datetime.now()
        run = self.run_repo.get_active_live(bot.id) or self.run_repo.get_latest(bot.id)
        user_kill = self.profile_repo.is_kill_switch_active(bot.user_id)

        credential = self.credential_repo.get_by_id(bot.api_key_id) if bot.api_key_id else None
        eligibility = evaluate_live_eligibility(
            run,
            live_trading_enabled=self.settings.LIVE_TRADING_ENABLED,
            kill_switch_active=self.settings.KILL_SWITCH_ENABLED or user_kill,
            secrets_ready=bool(credential and credential.is_configured),
            cooldown_seconds=self.settings.LIVE_ARM_COOLDOWN_SECONDS,
            now=now,
        )
        summary = (run.summary or {}) if run else {}

        return {
            "bot_id": bot.id,
            "run_id": run.id if run else None,
            "run_status": run.status if run else None,
            "mode": bot.mode,
            "live_trading_enabled": self.settings.LIVE_TRADING_ENABLED,
            "system_kill_switch": self.settings.KILL_SWITCH_ENABLED,
            "user_kill_switch": user_kill,
            "live_armed": bool(run and run.live_armed),
            "armed_at": run.armed_at if run else None,
            "cooldown_ends_at": eligibility.cooldown_ends_at,
            "live_failure_count": summary.get("live_failure_count", 0),
            "eligible": eligibility.allowed,
            "reasons": eligibility.reasons,
        }
