# packages/botrunner_core/services/orchestrator.py
"""
Tick 调度器

tick_all() processes every running bot concurrently, each in its own session.
Per bot the pipeline is linear:

    market snapshot -> reconcile working orders
        -> (open position: mark, SL/TP exit) | (selector entry)
        -> risk gate -> execution engine -> heartbeat

with one error boundary around the whole pipeline: an exception is recorded
on that bot only and never reaches its siblings.
"""
import asyncio
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.models.order import Order
from botrunner_core.data.models.position import Position
from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.order import OrderRepository
from botrunner_core.data.repositories.position import PositionRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.errors import DuplicateOrderError
from botrunner_core.services.ai_advisor import AIAdvisor
from botrunner_core.services.decision_selector import select_decision
from botrunner_core.services.exchange import ExchangeAdapter
from botrunner_core.services.execution import (
    AdapterFactory,
    ExecutionEngine,
    LiveExecutionEngine,
    PaperExecutionEngine,
)
from botrunner_core.services.market_data import MarketDataService
from botrunner_core.services.resilience import CircuitBreakerRegistry
from botrunner_core.services.risk_monitor import RiskMonitor, evaluate_risk
from botrunner_core.services.signal import generate_signal, get_strategy_config
from botrunner_core.trading.state import (
    BotTickResult,
    ExecutionResult,
    MarketTick,
    TickSummary,
    TradeDecision,
    opposite_side,
)
from botrunner_core.utils import LogContext, get_logger

logger = get_logger("orchestrator")


def check_exit_trigger(position: Position, price: float) -> Optional[str]:
    """
    buy: price <= stop -> stop_loss, price >= target -> take_profit
    sell: mirrored
    """
    stop = position.stop_loss_price
    target = position.take_profit_price
    if position.side == "buy":
        if stop is not None and price <= stop:
            return "stop_loss"
        if target is not None and price >= target:
            return "take_profit"
    else:
        if stop is not None and price >= stop:
            return "stop_loss"
        if target is not None and price <= target:
            return "take_profit"
    return None


class TickOrchestrator:
    def __init__(
        self,
        settings: TradingSettings,
        session_factory: Optional[Callable[[], Session]] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        market_adapter_factory: Optional[Callable[[], ExchangeAdapter]] = None,
        live_adapter_factory: Optional[AdapterFactory] = None,
        advisor: Optional[AIAdvisor] = None,
    ):
        self.settings = settings
        if session_factory is None:
            from botrunner_core.data.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.breakers = breakers or CircuitBreakerRegistry(
            settings.BREAKER_FAILURE_THRESHOLD, settings.BREAKER_RESET_SECONDS
        )
        self.market_adapter_factory = market_adapter_factory or (
            lambda: ExchangeAdapter.from_settings(settings, self.breakers)
        )
        self.live_adapter_factory = live_adapter_factory or (
            lambda credential: ExchangeAdapter.from_settings(settings, self.breakers, credential=credential)
        )
        self.advisor = advisor if advisor is not None else AIAdvisor.from_settings(settings, self.breakers)

    # ==================== 批量 ====================

    async def tick_all(self, now: Optional[datetime] = None) -> TickSummary:
        with self.session_factory() as session:
            bot_ids: List[int] = [bot.id for bot in BotRepository(session).get_running_bots()]

        if not bot_ids:
            logger.debug("No running bots")
            return TickSummary()

        logger.info(f"🔄 Tick for {len(bot_ids)} running bots")
        outcomes = await asyncio.gather(
            *(self._tick_in_own_session(bot_id, now) for bot_id in bot_ids),
            return_exceptions=True,
        )

        summary = TickSummary(processed=len(bot_ids))
        for bot_id, outcome in zip(bot_ids, outcomes):
            if isinstance(outcome, BaseException):
                # error boundary itself failed (e.g. store unreachable)
                logger.error(f"❌ Bot {bot_id}: tick aborted: {outcome!r}")
                outcome = BotTickResult(bot_id=bot_id, trace_id="", status="error", error=str(outcome))
            summary.results.append(outcome)
            if outcome.status == "ok":
                summary.successful += 1
            else:
                summary.failed += 1

        logger.info(f"✅ Tick done: {summary.successful} ok, {summary.failed} failed")
        return summary

    async def _tick_in_own_session(self, bot_id: int, now: Optional[datetime]) -> BotTickResult:
        with self.session_factory() as session:
            bot = BotRepository(session).get_by_id(bot_id)
            if bot is None:
                return BotTickResult(bot_id=bot_id, trace_id="", status="error", error="Bot not found")
            return await self.tick_bot(session, bot, now=now)

    # ==================== 单个机器人 ====================

    async def tick_bot(
        self,
        session: Session,
        bot: Bot,
        trace_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BotTickResult:
        """One full tick for ``bot``; exceptions are recorded on the bot, not raised"""
        trace_id = trace_id or uuid.uuid4().hex
        now = now or datetime.now()
        bot_id = bot.id

        with LogContext(logger, trace_id=trace_id, bot_id=bot_id):
            try:
                return await self._run_pipeline(session, bot, trace_id, now)
            except Exception as e:
                session.rollback()
                logger.error(f"❌ Bot {bot_id} tick failed: {e!r}", exc_info=True)
                self._record_error(session, bot_id, trace_id, e)
                return BotTickResult(bot_id=bot_id, trace_id=trace_id, status="error", error=str(e) or repr(e))

    async def _run_pipeline(self, session: Session, bot: Bot, trace_id: str, now: datetime) -> BotTickResult:
        bot_repo = BotRepository(session)
        position_repo = PositionRepository(session)
        run = RunRepository(session).get_active(bot.id)
        run_id = run.id if run else None

        if bot.last_tick_at and bot.last_tick_at.date() < now.date():
            logger.info(f"🌅 Bot {bot.id}: new trading day, daily PnL reset")
            bot = bot_repo.update(bot, daily_pnl=0.0)

        tick = await self._market_snapshot(bot.symbol)
        result = BotTickResult(bot_id=bot.id, trace_id=trace_id, market_source=tick.source)

        working = await self._working_orders(session, bot, now)

        position = position_repo.get_open(bot.id, bot.symbol)
        if position is not None:
            position = position_repo.mark(position, tick.price)
        if working:
            # an unsettled order is exposure too: no new order until it resolves
            result.stage = "waiting"
            logger.info(f"⏳ Bot {bot.id}: {len(working)} working orders, no new order this tick")
        elif position is not None:
            trigger = check_exit_trigger(position, tick.price)
            if trigger:
                result.stage = "exit"
                await self._exit(session, bot, position, trigger, tick, trace_id, run_id, result, now)
        else:
            signal = generate_signal(tick, get_strategy_config(bot.strategy_id))
            advice = None
            if self.advisor is not None:
                advice = await self.advisor.propose_decision(tick, bot, signal=signal)

            selection = select_decision(
                bot, tick, advice,
                confidence_threshold=self.settings.AI_CONFIDENCE_THRESHOLD,
                trace_id=trace_id,
                run_id=run_id,
            )
            result.decision_source = selection.source
            if selection.decision is not None:
                result.stage = "entry"
                BotEventRepository(session).log(
                    user_id=bot.user_id,
                    bot_id=bot.id,
                    run_id=run_id,
                    trace_id=trace_id,
                    event_type="tick",
                    message=f"{selection.source} decision: {selection.decision.side} {bot.symbol}",
                    payload={
                        "provenance": selection.source,
                        "side": selection.decision.side,
                        "size": selection.decision.size,
                        "confidence": selection.decision.confidence,
                        "rationale": selection.rationale,
                        "market_source": tick.source,
                    },
                )
                await self._route(session, bot, selection.decision, tick, result, now, selection.ai_confidence_ok)

        self._heartbeat(session, bot, run_id, trace_id, now)
        return result

    async def _market_snapshot(self, symbol: str) -> MarketTick:
        adapter = self.market_adapter_factory()
        try:
            return await MarketDataService(adapter).fetch_snapshot(symbol)
        finally:
            await adapter.close()

    async def _working_orders(self, session: Session, bot: Bot, now: datetime) -> List[Order]:
        """pending/submitted orders left after asking the exchange about them"""
        order_repo = OrderRepository(session)
        working = order_repo.get_working_orders(bot.id)
        if working and bot.mode == "live":
            engine = LiveExecutionEngine(session, self.settings, self.live_adapter_factory)
            await engine.reconcile_working_orders(bot, now=now)
            working = order_repo.get_working_orders(bot.id)
        return working

    async def _exit(self, session, bot, position, trigger, tick, trace_id, run_id, result, now):
        rationale = "Stop loss triggered" if trigger == "stop_loss" else "Take profit triggered"
        decision = TradeDecision(
            symbol=position.symbol,
            side=opposite_side(position.side),
            size=position.quantity,
            entry=tick.price,
            stop=position.stop_loss_price or tick.price,
            take_profit=position.take_profit_price or tick.price,
            confidence=1.0,
            rationale=rationale,
            trace_id=trace_id,
            run_id=run_id,
            reduce_only=True,
        )
        if trigger == "stop_loss":
            BotEventRepository(session).log(
                user_id=bot.user_id,
                bot_id=bot.id,
                run_id=run_id,
                trace_id=trace_id,
                event_type="risk_alert",
                severity="warn",
                message=f"Stop loss hit at {tick.price:.2f}",
                payload={"position_id": position.id, "stop_loss_price": position.stop_loss_price},
            )
        logger.warning(f"⚠️ Bot {bot.id}: {rationale} ({position.side} @ {tick.price:.2f})")
        await self._route(session, bot, decision, tick, result, now, ai_confidence_ok=True)

    async def _route(
        self,
        session: Session,
        bot: Bot,
        decision: TradeDecision,
        tick: MarketTick,
        result: BotTickResult,
        now: datetime,
        ai_confidence_ok: bool,
    ):
        """risk gate -> execution engine"""
        inputs = RiskMonitor(session, self.settings).build_inputs(bot, tick, ai_confidence_ok=ai_confidence_ok, now=now)
        risk = evaluate_risk(decision, inputs)
        result.risk = risk

        if not risk.allowed:
            result.execution = self._record_rejection(session, bot, decision, risk.flags)
            return

        result.execution = await self._engine_for(session, bot).execute_trade(bot, decision, tick, now=now)

    def _engine_for(self, session: Session, bot: Bot) -> ExecutionEngine:
        if bot.mode == "live":
            return LiveExecutionEngine(session, self.settings, self.live_adapter_factory)
        return PaperExecutionEngine(session, self.settings)

    def _record_rejection(self, session: Session, bot: Bot, decision: TradeDecision, flags: List[str]) -> ExecutionResult:
        client_order_id = f"rejected_{bot.id}_{decision.trace_id}"
        message = ", ".join(flags)
        order_id = None
        try:
            order = OrderRepository(session).create(
                bot_id=bot.id,
                user_id=bot.user_id,
                run_id=decision.run_id,
                client_order_id=client_order_id,
                symbol=decision.symbol,
                side=decision.side,
                order_type="market",
                status="rejected",
                quantity=decision.size,
                price=decision.entry,
                strategy_id=bot.strategy_id,
                reason=message,
                risk_checked=True,
                risk_flags={"flags": flags, "trace_id": decision.trace_id, "run_id": decision.run_id},
            )
            order_id = order.id
        except DuplicateOrderError:
            logger.warning(f"⚠️ Rejection for trace {decision.trace_id} already recorded")

        BotEventRepository(session).log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=decision.run_id,
            trace_id=decision.trace_id,
            event_type="risk_alert",
            severity="warn",
            message=f"Trade rejected by risk checks: {message}",
            payload={"flags": flags, "order_id": order_id, "side": decision.side, "size": decision.size},
        )
        return ExecutionResult(status="rejected", order_id=order_id, message=message)

    def _heartbeat(self, session: Session, bot: Bot, run_id: Optional[int], trace_id: str, now: datetime):
        # a clean tick ends an error streak
        BotRepository(session).update(bot, last_heartbeat_at=now, last_tick_at=now, error_count=0)
        if run_id is not None:
            run_repo = RunRepository(session)
            run = run_repo.get_by_id(run_id)
            if run is not None:
                run_repo.update(run, last_tick_at=now)

        # sampled by wall-clock bucket
        sample = max(1, self.settings.HEARTBEAT_SAMPLE_MINUTES)
        if int(now.timestamp() // 60) % sample == 0:
            BotEventRepository(session).log(
                user_id=bot.user_id,
                bot_id=bot.id,
                run_id=run_id,
                trace_id=trace_id,
                event_type="heartbeat",
                severity="debug",
                message="Heartbeat",
                metrics={"current_capital": bot.current_capital, "daily_pnl": bot.daily_pnl},
            )

    def _record_error(self, session: Session, bot_id: int, trace_id: str, error: Exception):
        bot_repo = BotRepository(session)
        bot = bot_repo.get_by_id(bot_id)
        if bot is None:
            return

        error_count = (bot.error_count or 0) + 1
        changes = {"error_count": error_count, "last_error": str(error) or repr(error)}
        if error_count >= self.settings.MAX_BOT_ERRORS:
            changes["status"] = "error"
            logger.critical(f"🚨 Bot {bot_id} moved to error after {error_count} consecutive failures")
        bot_repo.update(bot, **changes)

        BotEventRepository(session).log(
            user_id=bot.user_id,
            bot_id=bot_id,
            trace_id=trace_id,
            event_type="error",
            severity="error",
            message=f"Tick failed: {changes['last_error']}",
            payload={"error_count": error_count, "error_type": type(error).__name__},
        )
