# packages/botrunner_core/services/execution.py
"""
执行引擎

PaperExecutionEngine 与 LiveExecutionEngine 共用 execute_trade 接口：
    execute_trade(bot, decision, tick) -> ExecutionResult

- client_order_id = "{mode}_{bot_id}_{trace_id}"; the unique constraint on
  it makes a repeated decision a "Duplicate order" rejection.
- A fill always mutates exactly one position: it closes the open position
  or opens a new one. The order only becomes `filled` once that position
  write has gone through.
- A live order the exchange reports as working stays `submitted`;
  reconcile_working_orders() promotes it on a later tick.
- Rejections and exchange failures are returned, never raised.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.data.models.exchange_credential import ExchangeCredential
from botrunner_core.data.models.order import Order
from botrunner_core.data.repositories.bot import BotRepository
from botrunner_core.data.repositories.bot_event import BotEventRepository
from botrunner_core.data.repositories.exchange_credential import ExchangeCredentialRepository
from botrunner_core.data.repositories.order import OrderRepository
from botrunner_core.data.repositories.position import PositionRepository
from botrunner_core.data.repositories.run import RunRepository
from botrunner_core.data.repositories.user_profile import UserProfileRepository
from botrunner_core.errors import DuplicateOrderError, ExchangeError
from botrunner_core.services.circuit_breaker import LiveCircuitBreaker
from botrunner_core.services.decision_selector import protective_prices
from botrunner_core.services.exchange import ExchangeAdapter
from botrunner_core.services.fee_calculator import FeeCalculator
from botrunner_core.services.live_gates import evaluate_live_eligibility
from botrunner_core.trading.state import ExecutionResult, MarketTick, OrderPlacement, TradeDecision
from botrunner_core.utils import get_logger

logger = get_logger("execution")

AdapterFactory = Callable[[ExchangeCredential], ExchangeAdapter]


class ExecutionEngine(ABC):
    mode = "paper"

    def __init__(self, session: Session, settings: TradingSettings):
        self.settings = settings
        self.bot_repo = BotRepository(session)
        self.order_repo = OrderRepository(session)
        self.position_repo = PositionRepository(session)
        self.event_repo = BotEventRepository(session)

    @abstractmethod
    async def execute_trade(
        self,
        bot: Bot,
        decision: TradeDecision,
        tick: MarketTick,
        now: Optional[datetime] = None,
    ) -> ExecutionResult:
        ...

    def client_order_id(self, bot: Bot, decision: TradeDecision) -> str:
        return f"{self.mode}_{bot.id}_{decision.trace_id}"

    def _duplicate(self, bot: Bot, decision: TradeDecision, client_order_id: str) -> ExecutionResult:
        existing = self.order_repo.get_by_client_order_id(client_order_id)
        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=decision.run_id,
            trace_id=decision.trace_id,
            event_type="order",
            severity="warn",
            message="Duplicate order",
            payload={"client_order_id": client_order_id, "existing_order_id": existing.id if existing else None},
        )
        logger.warning(f"⚠️ Duplicate order {client_order_id}")
        return ExecutionResult(
            status="rejected",
            order_id=existing.id if existing else None,
            message="Duplicate order",
        )

    def _apply_fill(
        self,
        bot: Bot,
        decision: TradeDecision,
        order: Order,
        fill_price: float,
        quantity: float,
        fee: float,
        now: datetime,
    ):
        """Close the opposite open position, or open a new one"""
        position = self.position_repo.get_open(bot.id, decision.symbol)

        if position is None:
            self.position_repo.open(
                bot_id=bot.id,
                user_id=bot.user_id,
                run_id=decision.run_id,
                symbol=decision.symbol,
                side=decision.side,
                quantity=quantity,
                entry_price=fill_price,
                current_price=fill_price,
                stop_loss_price=decision.stop,
                take_profit_price=decision.take_profit,
                total_fees=fee,
                entry_order_id=order.id,
                opened_at=now,
            )
            return

        if position.side == decision.side:
            # one open position per bot/symbol; same side fills only pay the fee
            logger.warning(f"⚠️ Bot {bot.id}: {decision.side} fill while a {position.side} position is open")
            self.position_repo.update(position, total_fees=(position.total_fees or 0.0) + fee)
            return

        qty = position.quantity
        if position.side == "buy":
            gross = (fill_price - position.entry_price) * qty
        else:
            gross = (position.entry_price - fill_price) * qty
        realized = gross - (position.total_fees or 0.0) - fee

        self.position_repo.close(
            position,
            exit_price=fill_price,
            realized_pnl=realized,
            fee=fee,
            exit_order_id=order.id,
        )
        self.bot_repo.update(
            bot,
            current_capital=bot.current_capital + realized,
            total_pnl=bot.total_pnl + realized,
            daily_pnl=bot.daily_pnl + realized,
            total_trades=bot.total_trades + 1,
            winning_trades=bot.winning_trades + (1 if realized > 0 else 0),
        )
        logger.info(f"💰 Bot {bot.id} closed {position.side} {decision.symbol}: PnL ${realized:.2f}")

    def _fill(
        self,
        bot: Bot,
        decision: TradeDecision,
        order: Order,
        fill_price: float,
        quantity: float,
        fee: float,
        now: datetime,
    ) -> Order:
        """
        Position mutation first, then the order becomes filled.

        Raises:
            IntegrityError: the position write was refused; the order keeps its status
        """
        self._apply_fill(bot, decision, order, fill_price, quantity, fee, now)
        return self.order_repo.update_status(
            order, "filled",
            filled_quantity=quantity,
            average_fill_price=fill_price,
            filled_at=now,
        )


class PaperExecutionEngine(ExecutionEngine):
    """模拟成交：按决策价格立即全部成交"""

    mode = "paper"

    async def execute_trade(
        self,
        bot: Bot,
        decision: TradeDecision,
        tick: MarketTick,
        now: Optional[datetime] = None,
    ) -> ExecutionResult:
        now = now or datetime.now()
        client_order_id = self.client_order_id(bot, decision)
        if self.order_repo.get_by_client_order_id(client_order_id) is not None:
            return self._duplicate(bot, decision, client_order_id)

        fee = FeeCalculator.calculate_fee(decision.notional, self.settings.PAPER_FEE_RATE)
        try:
            order = self.order_repo.create(
                bot_id=bot.id,
                user_id=bot.user_id,
                run_id=decision.run_id,
                client_order_id=client_order_id,
                symbol=decision.symbol,
                side=decision.side,
                order_type="market",
                status="pending",
                quantity=decision.size,
                price=decision.entry,
                stop_loss_price=decision.stop,
                take_profit_price=decision.take_profit,
                fee=fee,
                slippage=0.0,
                strategy_id=bot.strategy_id,
                reason=decision.rationale,
                submitted_at=now,
            )
        except DuplicateOrderError:
            return self._duplicate(bot, decision, client_order_id)

        try:
            order = self._fill(bot, decision, order, decision.entry, decision.size, fee, now)
        except IntegrityError as e:
            reason = f"Position update failed: {e.orig or e}"
            order = self.order_repo.update_status(order, "rejected", reason=reason)
            self.event_repo.log(
                user_id=bot.user_id,
                bot_id=bot.id,
                run_id=decision.run_id,
                trace_id=decision.trace_id,
                event_type="error",
                severity="error",
                message=f"Paper fill not applied: {reason}",
                payload={"order_id": order.id, "client_order_id": client_order_id},
            )
            logger.error(f"❌ Paper fill {client_order_id} not applied: {reason}")
            return ExecutionResult(status="rejected", order_id=order.id, message=reason)

        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=decision.run_id,
            trace_id=decision.trace_id,
            event_type="fill",
            message=f"Paper {decision.side} {decision.size:.6f} {decision.symbol} @ {decision.entry:.2f}",
            payload={"order_id": order.id, "client_order_id": client_order_id, "fee": fee},
        )
        logger.info(f"✅ Paper fill {client_order_id}: {decision.side} {decision.size:.6f} @ {decision.entry:.2f}")
        return ExecutionResult(status="filled", order_id=order.id, message="Paper order filled")


class LiveExecutionEngine(ExecutionEngine):
    """真实下单：资格复核 -> pending 订单 -> 交易所 -> 状态更新 / 熔断计数"""

    mode = "live"

    def __init__(
        self,
        session: Session,
        settings: TradingSettings,
        adapter_factory: AdapterFactory,
    ):
        super().__init__(session, settings)
        self.adapter_factory = adapter_factory
        self.run_repo = RunRepository(session)
        self.profile_repo = UserProfileRepository(session)
        self.credential_repo = ExchangeCredentialRepository(session)
        self.breaker = LiveCircuitBreaker(session, settings)

    def _reject(
        self,
        bot: Bot,
        decision: TradeDecision,
        message: str,
        event_type: str = "risk_alert",
        severity: str = "warn",
        payload: Optional[dict] = None,
        order_id: Optional[int] = None,
    ) -> ExecutionResult:
        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=decision.run_id,
            trace_id=decision.trace_id,
            event_type=event_type,
            severity=severity,
            message=message,
            payload=payload,
        )
        logger.warning(f"⚠️ Live order rejected for bot {bot.id}: {message}")
        return ExecutionResult(status="rejected", order_id=order_id, message=message)

    async def execute_trade(
        self,
        bot: Bot,
        decision: TradeDecision,
        tick: MarketTick,
        now: Optional[datetime] = None,
    ) -> ExecutionResult:
        now = now or datetime.now()

        if not bot.api_key_id:
            return self._reject(bot, decision, "Missing API key", event_type="error", severity="error")

        credential = self.credential_repo.get_by_id(bot.api_key_id)
        run = self.run_repo.get_active_live(bot.id)
        eligibility = evaluate_live_eligibility(
            run,
            live_trading_enabled=self.settings.LIVE_TRADING_ENABLED,
            kill_switch_active=(
                self.settings.KILL_SWITCH_ENABLED
                or self.profile_repo.is_kill_switch_active(bot.user_id)
            ),
            secrets_ready=bool(credential and credential.is_configured),
            cooldown_seconds=self.settings.LIVE_ARM_COOLDOWN_SECONDS,
            now=now,
        )
        if not eligibility.allowed:
            return self._reject(
                bot, decision, ", ".join(eligibility.reasons),
                payload={"reasons": eligibility.reasons},
            )

        if not tick.is_fresh:
            return self._reject(
                bot, decision, "Stale market data",
                payload={"market_source": tick.source},
            )

        decision = decision.model_copy(update={"run_id": run.id})
        client_order_id = self.client_order_id(bot, decision)
        if self.order_repo.get_by_client_order_id(client_order_id) is not None:
            return self._duplicate(bot, decision, client_order_id)

        notional = decision.notional
        fee = FeeCalculator.from_bps(notional, self.settings.LIVE_FEE_BPS)
        slippage = FeeCalculator.from_bps(notional, self.settings.LIVE_SLIPPAGE_BPS)
        try:
            order = self.order_repo.create(
                bot_id=bot.id,
                user_id=bot.user_id,
                run_id=run.id,
                client_order_id=client_order_id,
                symbol=decision.symbol,
                side=decision.side,
                order_type="market",
                status="pending",
                quantity=decision.size,
                price=decision.entry,
                stop_loss_price=decision.stop,
                take_profit_price=decision.take_profit,
                fee=fee,
                slippage=slippage,
                strategy_id=bot.strategy_id,
                reason=decision.rationale,
            )
        except DuplicateOrderError:
            return self._duplicate(bot, decision, client_order_id)

        adapter = None
        try:
            adapter = self.adapter_factory(credential)
            placement = await adapter.place_order(
                decision.symbol, decision.side, "market", decision.size,
                client_order_id=client_order_id,
            )
        except Exception as e:
            logger.error(f"❌ Exchange call raised for {client_order_id}: {e!r}")
            placement = OrderPlacement(success=False, error_code="EXCHANGE_ERROR", error_message=str(e) or repr(e))
        finally:
            if adapter is not None:
                await adapter.close()

        if placement.success:
            return self._on_placed(bot, run, decision, order, placement, fee, now)
        return self._on_failed(bot, run, decision, order, placement, now)

    def _on_placed(self, bot, run, decision, order, placement: OrderPlacement, fee: float, now: datetime) -> ExecutionResult:
        order = self.order_repo.update_status(
            order, "submitted" if placement.status == "filled" else placement.status,
            exchange_order_id=placement.exchange_order_id,
            submitted_at=now,
        )
        self.breaker.record_success(run)

        status = order.status
        if placement.status == "filled":
            try:
                order = self._fill(
                    bot, decision, order,
                    placement.average or decision.entry,
                    placement.filled or decision.size,
                    fee, now,
                )
                status = "filled"
            except IntegrityError as e:
                # order stays submitted; reconciliation retries the position write
                self._log_unapplied_fill(bot, order, decision.trace_id, e)

        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run.id,
            trace_id=decision.trace_id,
            event_type="fill" if status == "filled" else "order",
            message=f"Live {decision.side} {decision.size:.6f} {decision.symbol} {status}",
            payload={
                "order_id": order.id,
                "client_order_id": order.client_order_id,
                "exchange_order_id": placement.exchange_order_id,
            },
        )
        logger.info(f"✅ Live order {order.client_order_id} {status} ({placement.exchange_order_id})")
        return ExecutionResult(
            status=status,
            order_id=order.id,
            exchange_order_id=placement.exchange_order_id,
            message=f"Live order {status}",
        )

    def _log_unapplied_fill(self, bot: Bot, order: Order, trace_id: str, error: IntegrityError):
        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=order.run_id,
            trace_id=trace_id,
            event_type="error",
            severity="error",
            message=f"Live fill not applied to position: {error.orig or error}",
            payload={"order_id": order.id, "client_order_id": order.client_order_id},
        )
        logger.error(f"❌ Live fill {order.client_order_id} not applied: {error.orig or error}")

    # ==================== 对账 ====================

    def _decision_for(self, bot: Bot, order: Order, fill_price: float) -> TradeDecision:
        """Rebuild the decision behind a working order from what the order stored"""
        stop, take_profit = order.stop_loss_price, order.take_profit_price
        if stop is None or take_profit is None:
            stop, take_profit = protective_prices(order.side, fill_price, bot.stop_loss_pct, bot.take_profit_pct)
        return TradeDecision(
            symbol=order.symbol,
            side=order.side,
            size=order.quantity,
            entry=order.price or fill_price,
            stop=stop,
            take_profit=take_profit,
            confidence=1.0,
            rationale=order.reason or "",
            trace_id=order.client_order_id.split("_", 2)[-1],
            run_id=order.run_id,
        )

    async def reconcile_working_orders(self, bot: Bot, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Ask the exchange about every working order of ``bot`` that it acknowledged.

        filled -> position mutation + order filled; rejected/canceled/expired ->
        order rejected; still open -> untouched. Orders without an exchange id
        are left alone.
        """
        now = now or datetime.now()
        working = [o for o in self.order_repo.get_working_orders(bot.id) if o.exchange_order_id]
        if not working:
            return []

        credential = self.credential_repo.get_by_id(bot.api_key_id) if bot.api_key_id else None
        if credential is None:
            logger.warning(f"⚠️ Bot {bot.id}: {len(working)} working orders but no exchange credential")
            return []

        updates = []
        adapter = self.adapter_factory(credential)
        try:
            for order in working:
                try:
                    placement = await adapter.fetch_order(order.exchange_order_id, order.symbol)
                except ExchangeError as e:
                    logger.warning(f"⚠️ Order {order.client_order_id} not reconciled [{e.code}]: {e.message}")
                    continue

                trace_id = order.client_order_id.split("_", 2)[-1]
                if placement.status == "filled":
                    fill_price = placement.average or order.price
                    decision = self._decision_for(bot, order, fill_price)
                    try:
                        order = self._fill(
                            bot, decision, order, fill_price,
                            placement.filled or order.quantity,
                            order.fee, now,
                        )
                    except IntegrityError as e:
                        self._log_unapplied_fill(bot, order, trace_id, e)
                        continue
                    event_type, message = "fill", f"Live {order.side} {order.symbol} filled on exchange"
                elif placement.status == "rejected":
                    order = self.order_repo.update_status(
                        order, "rejected",
                        reason=placement.error_message or "Exchange closed the order unfilled",
                    )
                    event_type, message = "order", f"Live {order.side} {order.symbol} closed unfilled on exchange"
                else:
                    continue

                self.event_repo.log(
                    user_id=bot.user_id,
                    bot_id=bot.id,
                    run_id=order.run_id,
                    trace_id=trace_id,
                    event_type=event_type,
                    message=message,
                    payload={
                        "order_id": order.id,
                        "client_order_id": order.client_order_id,
                        "exchange_order_id": order.exchange_order_id,
                    },
                )
                logger.info(f"✅ Reconciled {order.client_order_id}: {order.status}")
                updates.append({"id": order.id, "client_order_id": order.client_order_id, "status": order.status})
        finally:
            await adapter.close()
        return updates

    def _on_failed(self, bot, run, decision, order, placement: OrderPlacement, now: datetime) -> ExecutionResult:
        reason = f"{placement.error_code or 'EXCHANGE_ERROR'}: {placement.error_message or 'order failed'}"
        order = self.order_repo.update_status(
            order, "rejected",
            reason=reason,
            exchange_order_id=placement.exchange_order_id,
        )
        self.event_repo.log(
            user_id=bot.user_id,
            bot_id=bot.id,
            run_id=run.id,
            trace_id=decision.trace_id,
            event_type="error",
            severity="error",
            message=f"Live order failed: {reason}",
            payload={"order_id": order.id, "client_order_id": order.client_order_id, "error_code": placement.error_code},
        )
        logger.error(f"❌ Live order {order.client_order_id} failed: {reason}")
        self.breaker.handle_live_failure(bot, run, reason, trace_id=decision.trace_id, now=now)
        return ExecutionResult(status="rejected", order_id=order.id, message=reason)
