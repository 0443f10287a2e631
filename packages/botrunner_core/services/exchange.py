"""
ExchangeAdapter - 交易所访问（基于 CCXT Pro）

- get_ticker / get_balances / fetch_order: 行情、余额与订单状态
- place_order / cancel_order: 下单撤单，返回 OrderPlacement，不抛异常
- 所有调用经过 RateLimiter + ResilientCaller（超时 / 重试 / 熔断）

Exchange errors are normalized to a small set of codes so callers and the
audit log never depend on ccxt class names.
"""
import asyncio
from typing import Any, Dict, Optional

import ccxt
import ccxt.pro as ccxtpro

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.exchange_credential import ExchangeCredential
from botrunner_core.errors import CircuitOpenError, ExchangeError
from botrunner_core.services.ratelimit import RateLimiter
from botrunner_core.services.resilience import CircuitBreakerRegistry, ResilientCaller
from botrunner_core.trading.state import OrderPlacement, Ticker
from botrunner_core.utils import get_logger

logger = get_logger("exchange")


# subclasses first: PermissionDenied is an AuthenticationError
ERROR_CODES = (
    (ccxt.PermissionDenied, "PERMISSION_DENIED"),
    (ccxt.AuthenticationError, "INVALID_API_KEY"),
    (ccxt.InsufficientFunds, "INSUFFICIENT_FUNDS"),
    ((ccxt.RateLimitExceeded, ccxt.DDoSProtection), "RATE_LIMIT"),
    ((ccxt.ExchangeNotAvailable, ccxt.RequestTimeout, ccxt.NetworkError), "SERVICE_UNAVAILABLE"),
    ((CircuitOpenError, asyncio.TimeoutError), "SERVICE_UNAVAILABLE"),
)

ORDER_STATUS_MAP = {
    "closed": "filled",
    "open": "submitted",
    "canceled": "rejected",
    "cancelled": "rejected",
    "rejected": "rejected",
    "expired": "rejected",
}

# transient failures worth retrying
RETRYABLE = (ccxt.NetworkError, asyncio.TimeoutError)


def normalize_exchange_error(exc: BaseException) -> str:
    for exc_types, code in ERROR_CODES:
        if isinstance(exc, exc_types):
            return code
    return "EXCHANGE_ERROR"


def normalize_order_status(status: Optional[str]) -> str:
    """Unknown or missing statuses count as submitted (still working)"""
    return ORDER_STATUS_MAP.get((status or "open").lower(), "submitted")


class ExchangeAdapter:
    """单个交易所连接，按需创建，用完 close()"""

    def __init__(
        self,
        exchange_name: str,
        breakers: CircuitBreakerRegistry,
        credential: Optional[ExchangeCredential] = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        base_delay: float = 0.5,
        rate_limiter: Optional[RateLimiter] = None,
        exchange: Any = None,
    ):
        self.exchange_name = exchange_name.lower()
        self.breaker_key = f"exchange:{self.exchange_name}"
        self.exchange = exchange or self._create_exchange(credential)
        self.rate_limiter = rate_limiter or RateLimiter()

        # reads retry; order placement never does (a retried create could double fill)
        self.read_caller = ResilientCaller(
            breakers, timeout=timeout, max_retries=max_retries,
            base_delay=base_delay, retry_on=RETRYABLE,
        )
        self.write_caller = ResilientCaller(
            breakers, timeout=timeout, max_retries=0, retry_on=RETRYABLE,
        )

    @classmethod
    def from_settings(
        cls,
        settings: TradingSettings,
        breakers: CircuitBreakerRegistry,
        credential: Optional[ExchangeCredential] = None,
    ) -> "ExchangeAdapter":
        exchange_name = credential.exchange_type if credential else settings.MARKET_DATA_EXCHANGE
        return cls(
            exchange_name,
            breakers,
            credential=credential,
            timeout=settings.EXCHANGE_TIMEOUT_SECONDS,
            max_retries=settings.EXCHANGE_MAX_RETRIES,
            base_delay=settings.EXCHANGE_BACKOFF_SECONDS,
        )

    def _create_exchange(self, credential: Optional[ExchangeCredential]):
        exchange_class = getattr(ccxtpro, self.exchange_name, None)
        if exchange_class is None:
            raise ValueError(f"Unsupported exchange: {self.exchange_name}")

        config: Dict[str, Any] = {'enableRateLimit': True}
        if credential:
            config.update({
                'apiKey': credential.api_key,
                'secret': credential.api_secret,
                'testnet': credential.testnet,
            })
            if credential.password:
                config['password'] = credential.password

        logger.info(f"Initializing exchange: {self.exchange_name} (authenticated={credential is not None})")
        return exchange_class(config)

    # ==================== 行情 ====================

    async def get_ticker(self, symbol: str) -> Ticker:
        """
        Raises:
            ExchangeError: code is one of the normalized error codes
        """
        await self.rate_limiter.wait_if_needed()
        try:
            raw = await self.read_caller.call(self.breaker_key, self.exchange.fetch_ticker, symbol)
        except Exception as e:
            code = normalize_exchange_error(e)
            logger.warning(f"⚠️ get_ticker {symbol} failed [{code}]: {e}")
            raise ExchangeError(str(e) or code, code=code) from e

        price = raw.get('last') or raw.get('close') or 0.0
        return Ticker(
            symbol=raw.get('symbol', symbol),
            price=float(price),
            bid=float(raw.get('bid') or price),
            ask=float(raw.get('ask') or price),
            volume=float(raw.get('baseVolume') or 0.0),
            change_24h=float(raw.get('percentage') or 0.0),
        )

    async def get_balances(self) -> Dict[str, float]:
        """Non-zero total balances per currency"""
        await self.rate_limiter.wait_if_needed()
        try:
            raw = await self.read_caller.call(self.breaker_key, self.exchange.fetch_balance)
        except Exception as e:
            code = normalize_exchange_error(e)
            logger.warning(f"⚠️ get_balances failed [{code}]: {e}")
            raise ExchangeError(str(e) or code, code=code) from e

        totals = raw.get('total') or {}
        return {currency: float(amount) for currency, amount in totals.items() if amount}

    # ==================== 下单 ====================

    async def place_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        quantity: float,
        client_order_id: Optional[str] = None,
        price: Optional[float] = None,
    ) -> OrderPlacement:
        """统一的下单接口；失败时返回 success=False 与规范化的 error_code"""
        params = {'clientOrderId': client_order_id} if client_order_id else {}
        await self.rate_limiter.wait_if_needed()
        try:
            order = await self.write_caller.call(
                self.breaker_key,
                self.exchange.create_order,
                symbol, order_type, side, quantity, price, params,
            )
        except Exception as e:
            code = normalize_exchange_error(e)
            logger.error(f"❌ Create order failed [{code}]: {symbol} {side} {quantity}: {e}")
            return OrderPlacement(success=False, error_code=code, error_message=str(e) or code)

        placement = self._to_placement(order)
        logger.info(f"✅ Order placed: {symbol} {side} {quantity} -> {order.get('id')} ({placement.status})")
        return placement

    async def fetch_order(self, exchange_order_id: str, symbol: str) -> OrderPlacement:
        """
        Current state of a previously placed order.

        Raises:
            ExchangeError: code is one of the normalized error codes
        """
        await self.rate_limiter.wait_if_needed()
        try:
            order = await self.read_caller.call(
                self.breaker_key, self.exchange.fetch_order, exchange_order_id, symbol
            )
        except Exception as e:
            code = normalize_exchange_error(e)
            logger.warning(f"⚠️ fetch_order {exchange_order_id} failed [{code}]: {e}")
            raise ExchangeError(str(e) or code, code=code) from e
        return self._to_placement(order)

    @staticmethod
    def _to_placement(order: Dict[str, Any]) -> OrderPlacement:
        status = normalize_order_status(order.get('status'))
        return OrderPlacement(
            success=status != "rejected",
            exchange_order_id=str(order['id']) if order.get('id') is not None else None,
            status=status,
            filled=float(order.get('filled') or 0.0),
            average=order.get('average'),
            error_code="ORDER_REJECTED" if status == "rejected" else None,
            error_message=f"Exchange reported {order.get('status')}" if status == "rejected" else None,
            raw={'id': order.get('id'), 'status': order.get('status'), 'timestamp': order.get('timestamp')},
        )

    async def cancel_order(self, exchange_order_id: str, symbol: str) -> bool:
        await self.rate_limiter.wait_if_needed()
        try:
            await self.write_caller.call(self.breaker_key, self.exchange.cancel_order, exchange_order_id, symbol)
        except Exception as e:
            logger.error(f"❌ Cancel order {exchange_order_id} failed [{normalize_exchange_error(e)}]: {e}")
            return False
        logger.info(f"✅ Order cancelled: {exchange_order_id}")
        return True

    async def close(self):
        close = getattr(self.exchange, 'close', None)
        if close is not None:
            await close()
