# packages/botrunner_core/services/control.py
"""
控制面服务

Every user-initiated operation (bot CRUD + lifecycle, run transitions, live
arming, kill switch, single tick) goes through ControlService. ``dispatch``
routes a typed ControlCommand with an explicit ``match``; the REST routes
call the same methods directly.

All bot lookups are scoped to the caller: another user's bot is "not found".
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.exchange_credential import ExchangeCredentialRepository
from botrunner_core.data.repositories.order import OrderRepository
from botrunner_core.data.repositories.position import PositionRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.errors import ConflictError, NotFoundError
from botrunner_core.services.arming import ArmingService
from botrunner_core.services.exchange import ExchangeAdapter
from botrunner_core.services.execution import AdapterFactory
from botrunner_core.services.resilience import CircuitBreakerRegistry
from botrunner_core.services.run_state_machine import RunStateMachine
from botrunner_core.trading.commands import (
    BotChanges,
    BotStatusCommand,
    CommandResult,
    ConfirmArmCommand,
    CreateBotCommand,
    CreateRunCommand,
    DeleteBotCommand,
    KillBotCommand,
    LiveStatusCommand,
    PauseBotCommand,
    RequestArmCommand,
    RequestTransitionCommand,
    RunOneTickCommand,
    SetKillSwitchCommand,
    StartBotCommand,
    StopBotCommand,
    UpdateBotCommand,
)
from botrunner_core.utils import get_logger

logger = get_logger("control")

UPDATABLE_FIELDS = (
    "name", "symbol", "strategy_id", "strategy_config",
    "max_position_size", "max_daily_loss", "stop_loss_pct", "take_profit_pct",
    "max_leverage", "api_key_id",
)


def new_trace_id() -> str:
    return uuid.uuid4().hex


class ControlService:
    def __init__(
        self,
        session: Session,
        settings: TradingSettings,
        orchestrator=None,
        adapter_factory: Optional[AdapterFactory] = None,
    ):
        """
        Args:
            orchestrator: TickOrchestrator used by run_one_tick (optional)
            adapter_factory: credential -> ExchangeAdapter, used by kill to cancel
                live orders; defaults to the orchestrator's
        """
        self.session = session
        self.settings = settings
        self.orchestrator = orchestrator
        if adapter_factory is None and orchestrator is not None:
            adapter_factory = orchestrator.live_adapter_factory
        if adapter_factory is None:
            breakers = CircuitBreakerRegistry(settings.BREAKER_FAILURE_THRESHOLD, settings.BREAKER_RESET_SECONDS)

            def default_factory(credential):
                return ExchangeAdapter.from_settings(settings, breakers, credential=credential)
            adapter_factory = default_factory
        self.adapter_factory = adapter_factory

        self.bot_repo = BotRepository(session)
        self.run_repo = RunRepository(session)
        self.order_repo = OrderRepository(session)
        self.position_repo = PositionRepository(session)
        self.event_repo = BotEventRepository(session)
        self.credential_repo = ExchangeCredentialRepository(session)
        self.state_machine = RunStateMachine(session, settings)
        self.arming = ArmingService(session, settings)

    # ==================== dispatch ====================

    async def dispatch(self, command, user_id: str) -> CommandResult:
        trace_id = new_trace_id()

        match command:
            case CreateBotCommand():
                data, message = self.create_bot(user_id, command, trace_id=trace_id).model_dump(), "Bot created"
            case StartBotCommand(bot_id=bot_id, mode=mode):
                data, message = self.start_bot(user_id, bot_id, mode=mode, trace_id=trace_id), "Bot started"
            case PauseBotCommand(bot_id=bot_id):
                data, message = self.pause_bot(user_id, bot_id, trace_id=trace_id), "Bot paused"
            case StopBotCommand(bot_id=bot_id):
                data, message = self.stop_bot(user_id, bot_id, trace_id=trace_id), "Bot stopped"
            case KillBotCommand(bot_id=bot_id):
                data, message = await self.kill_bot(user_id, bot_id, trace_id=trace_id), "Kill switch engaged"
            case UpdateBotCommand(bot_id=bot_id, changes=changes):
                data, message = self.update_bot(user_id, bot_id, changes, trace_id=trace_id).model_dump(), "Bot updated"
            case DeleteBotCommand(bot_id=bot_id):
                data, message = self.delete_bot(user_id, bot_id), "Bot deleted"
            case BotStatusCommand(bot_id=bot_id):
                data, message = self.bot_status(user_id, bot_id), "Bot status"
            case RequestArmCommand(bot_id=bot_id):
                data, message = self.request_arm(user_id, bot_id), "Arm token issued"
            case ConfirmArmCommand(bot_id=bot_id, token=token):
                data, message = self.confirm_arm(user_id, bot_id, token), "Live trading armed"
            case SetKillSwitchCommand(enabled=enabled):
                data, message = self.arming.set_kill_switch(user_id, enabled), "Kill switch updated"
            case LiveStatusCommand(bot_id=bot_id):
                data, message = self.live_status(user_id, bot_id), "Live status"
            case CreateRunCommand(bot_id=bot_id, mode=mode):
                data, message = self.create_run(user_id, bot_id, mode=mode).model_dump(), "Run created"
            case RequestTransitionCommand(bot_id=bot_id, transition=transition, mode=mode):
                run = self.request_transition(user_id, bot_id, transition, mode=mode, trace_id=trace_id)
                data, message = run.model_dump(), f"Run {run.status}"
            case RunOneTickCommand(bot_id=bot_id):
                result = await self.run_one_tick(user_id, bot_id, trace_id=trace_id)
                data, message = result.model_dump(), f"Tick {result.status}"
            case _:
                raise ValueError(f"Unsupported command: {command!r}")

        logger.info(f"✅ [{trace_id[:8]}] {command.action} by {user_id}: {message}")
        return CommandResult(action=command.action, trace_id=trace_id, message=message, data=data)

    # ==================== helpers ====================

    def get_bot(self, user_id: str, bot_id: int) -> Bot:
        bot = self.bot_repo.get_for_user(bot_id, user_id)
        if bot is None:
            logger.debug(f"🔍 Bot {bot_id} not found for user {user_id}")
            raise NotFoundError(f"Bot {bot_id} not found", code="BOT_NOT_FOUND")
        return bot

    def _check_credential(self, user_id: str, api_key_id: Optional[int]):
        if api_key_id is None:
            return
        credential = self.credential_repo.get_by_id(api_key_id)
        if credential is None or credential.user_id != user_id:
            raise NotFoundError(f"API key {api_key_id} not found", code="API_KEY_NOT_FOUND")

    def _log(self, bot: Bot, event_type: str, message: str, severity: str = "info",
             run_id: Optional[int] = None, trace_id: Optional[str] = None, payload: Optional[dict] = None):
        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run_id,
            trace_id=trace_id,
            event_type=event_type,
            severity=severity,
            message=message,
            payload=payload,
        )

    # ==================== bot ====================

    def create_bot(self, user_id: str, command: CreateBotCommand, trace_id: Optional[str] = None) -> Bot:
        self._check_credential(user_id, command.api_key_id)
        fields = command.model_dump(exclude={"action", "initial_capital"})
        bot = self.bot_repo.create(
            user_id=user_id,
            status="stopped",
            initial_capital=command.initial_capital,
            current_capital=command.initial_capital,
            **fields,
        )
        self._log(bot, "config_change", f"Bot '{bot.name}' created", trace_id=trace_id,
                  payload={"symbol": bot.symbol, "mode": bot.mode, "strategy_id": bot.strategy_id})
        return bot

    def list_bots(self, user_id: str, status: Optional[str] = None):
        return self.bot_repo.list_for_user(user_id, status=status)

    def start_bot(
        self,
        user_id: str,
        bot_id: int,
        mode: Optional[str] = None,
        trace_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Bring a bot online. Live mode needs an API key, live trading enabled
        and no kill switch, but not arming (arming needs a running live run).
        """
        now = now or datetime.now()
        bot = self.get_bot(user_id, bot_id)
        target_mode = mode or bot.mode

        if target_mode == "live" and not bot.api_key_id:
            raise ConflictError("Live trading requires an API key", code="LIVE_REQUIRES_API_KEY")

        run = self.run_repo.get_resumable(bot.id)
        if run is not None and run.status == "running":
            # bot in error (or stale run): close the old run first
            run = self.state_machine.transition(bot, run, "stop", now=now, trace_id=trace_id)
        if run is None:
            run = self.run_repo.create(bot.id, user_id, target_mode)

        run = self.state_machine.transition(
            bot, run, "start", mode=target_mode, now=now, require_arming=False, trace_id=trace_id
        )
        bot = self.bot_repo.update(bot, error_count=0, last_error=None, last_heartbeat_at=now)
        return {"bot": bot.model_dump(), "run": run.model_dump()}

    def _transition_latest(self, user_id: str, bot_id: int, action: str, trace_id: Optional[str]) -> Dict[str, Any]:
        bot = self.get_bot(user_id, bot_id)
        run = self.run_repo.get_resumable(bot.id)
        if run is None:
            if action == "stop":
                bot = self.bot_repo.update(bot, status="stopped")
                self._log(bot, "stop", "Bot stopped (no active run)", trace_id=trace_id)
                return {"bot": bot.model_dump(), "run": None}
            raise ConflictError("Bot has no active run", code="NO_ACTIVE_RUN")

        run = self.state_machine.transition(bot, run, action, trace_id=trace_id)
        return {"bot": bot.model_dump(), "run": run.model_dump()}

    def pause_bot(self, user_id: str, bot_id: int, trace_id: Optional[str] = None) -> Dict[str, Any]:
        return self._transition_latest(user_id, bot_id, "pause", trace_id)

    def stop_bot(self, user_id: str, bot_id: int, trace_id: Optional[str] = None) -> Dict[str, Any]:
        return self._transition_latest(user_id, bot_id, "stop", trace_id)

    async def _cancel_on_exchange(self, bot: Bot) -> List[Dict[str, Any]]:
        """
        Cancel the bot's acknowledged working orders on the exchange.

        Returns the orders that could not be canceled there; they keep their
        store status since they may still fill.
        """
        on_exchange = [o for o in self.order_repo.get_working_orders(bot.id) if o.exchange_order_id]
        if not on_exchange:
            return []

        credential = self.credential_repo.get_by_id(bot.api_key_id) if bot.api_key_id else None
        if credential is None:
            return [
                {"id": o.id, "exchange_order_id": o.exchange_order_id, "error": "No exchange credential"}
                for o in on_exchange
            ]

        failed = []
        adapter = self.adapter_factory(credential)
        try:
            for order in on_exchange:
                if not await adapter.cancel_order(order.exchange_order_id, order.symbol):
                    failed.append({
                        "id": order.id,
                        "exchange_order_id": order.exchange_order_id,
                        "error": "Exchange cancel failed",
                    })
        finally:
            await adapter.close()
        return failed

    async def kill_bot(self, user_id: str, bot_id: int, trace_id: Optional[str] = None) -> Dict[str, Any]:
        """
        紧急停止：撤销挂单（交易所 + 本地）+ kill 当前 run + 机器人停止
        """
        bot = self.get_bot(user_id, bot_id)
        cancel_failures = await self._cancel_on_exchange(bot)
        canceled = self.order_repo.cancel_working_orders(
            bot.id, reason="Emergency kill switch",
            keep={failure["id"] for failure in cancel_failures},
        )

        run = self.run_repo.get_resumable(bot.id)
        if run is not None:
            run = self.state_machine.transition(bot, run, "kill", trace_id=trace_id)

        bot = self.bot_repo.update(bot, status="stopped", last_error="Emergency kill switch activated")
        self._log(
            bot, "kill", "Emergency kill switch activated",
            severity="critical",
            run_id=run.id if run else None,
            trace_id=trace_id,
            payload={"canceled_orders": canceled, "cancel_failures": cancel_failures},
        )
        logger.critical(f"🚨 Bot {bot.id} killed, {len(canceled)} working orders canceled")
        if cancel_failures:
            logger.error(f"❌ Bot {bot.id}: {len(cancel_failures)} orders could not be canceled on the exchange")
        return {
            "bot": bot.model_dump(),
            "run": run.model_dump() if run else None,
            "canceled_orders": canceled,
            "cancel_failures": cancel_failures,
        }

    def update_bot(self, user_id: str, bot_id: int, changes: BotChanges, trace_id: Optional[str] = None) -> Bot:
        bot = self.get_bot(user_id, bot_id)
        values = {
            key: value
            for key, value in changes.model_dump(exclude_unset=True).items()
            if key in UPDATABLE_FIELDS
        }
        if "api_key_id" in values:
            self._check_credential(user_id, values["api_key_id"])
        if not values:
            return bot

        bot = self.bot_repo.update(bot, **values)
        self._log(bot, "config_change", f"Bot updated: {', '.join(sorted(values))}", trace_id=trace_id,
                  payload={"fields": sorted(values)})
        return bot

    def delete_bot(self, user_id: str, bot_id: int) -> Dict[str, Any]:
        bot = self.get_bot(user_id, bot_id)
        if bot.status == "running":
            raise ConflictError("Stop the bot before deleting it", code="BOT_RUNNING")
        self.bot_repo.delete(bot)
        logger.info(f"✅ Bot {bot_id} deleted by {user_id}")
        return {"bot_id": bot_id, "deleted": True}

    def bot_status(self, user_id: str, bot_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        bot = self.get_bot(user_id, bot_id)
        run = self.run_repo.get_latest(bot.id)
        position = self.position_repo.get_open(bot.id)
        events = self.event_repo.get_recent(bot.id, limit=20)
        orders = self.order_repo.get_by_bot(bot.id, limit=20)
        runs = self.run_repo.list_for_bot(bot.id, limit=5)

        heartbeat_age = None
        health = "unknown"
        if bot.last_heartbeat_at:
            heartbeat_age = (now - bot.last_heartbeat_at).total_seconds()
            health = "healthy" if heartbeat_age < self.settings.HEALTHY_HEARTBEAT_SECONDS else "stale"

        return {
            "bot": bot.model_dump(),
            "run": run.model_dump(exclude={"arm_token_hash"}) if run else None,
            "position": position.model_dump() if position else None,
            "recent_events": [e.model_dump() for e in events],
            "recent_orders": [o.model_dump() for o in orders],
            "recent_runs": [r.model_dump(exclude={"arm_token_hash"}) for r in runs],
            "health": health,
            "heartbeat_age_seconds": heartbeat_age,
        }

    # ==================== run ====================

    def create_run(self, user_id: str, bot_id: int, mode: Optional[str] = None):
        bot = self.get_bot(user_id, bot_id)
        run = self.run_repo.create(bot.id, user_id, mode or bot.mode)
        self._log(bot, "config_change", f"Run {run.id} created", run_id=run.id, payload={"mode": run.mode})
        return run

    def request_transition(
        self,
        user_id: str,
        bot_id: int,
        transition: str,
        mode: Optional[str] = None,
        trace_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        """Apply a state machine action to the bot's latest non-terminal run"""
        bot = self.get_bot(user_id, bot_id)
        run = self.run_repo.get_resumable(bot.id)
        if run is None:
            raise NotFoundError(f"No open run for bot {bot_id}", code="RUN_NOT_FOUND")

        target_mode = mode or run.mode
        if transition == "start" and target_mode == "live" and not bot.api_key_id:
            raise ConflictError("Live trading requires an API key", code="LIVE_REQUIRES_API_KEY")

        return self.state_machine.transition(bot, run, transition, mode=mode, now=now, trace_id=trace_id)

    async def run_one_tick(self, user_id: str, bot_id: int, trace_id: Optional[str] = None):
        if self.orchestrator is None:
            raise ConflictError("Tick orchestrator not configured", code="ORCHESTRATOR_UNAVAILABLE")
        bot = self.get_bot(user_id, bot_id)
        return await self.orchestrator.tick_bot(self.session, bot, trace_id=trace_id)

    # ==================== live ====================

    def request_arm(self, user_id: str, bot_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.arming.request_arm(self.get_bot(user_id, bot_id), now=now)

    def confirm_arm(self, user_id: str, bot_id: int, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.arming.confirm_arm(self.get_bot(user_id, bot_id), token, now=now)

    def set_kill_switch(self, user_id: str, enabled: bool) -> Dict[str, Any]:
        return self.arming.set_kill_switch(user_id, enabled)

    def live_status(self, user_id: str, bot_id: int) -> Dict[str, Any]:
        return self.arming.live_status(self.get_bot(user_id, bot_id))
