"""
Domain exceptions

Validation failures (bad input, illegal transitions, unmet live gates) are
raised to the caller. Risk rejections and exchange failures during an
execution are *not* exceptions: they come back as a rejected ExecutionResult.
"""
from typing import Optional


class TradingError(Exception):
    """Base class carrying a stable machine-readable code"""

    code = "TRADING_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFoundError(TradingError):
    code = "NOT_FOUND"


class ConflictError(TradingError):
    code = "CONFLICT"


class InvalidTransition(TradingError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, action: str):
        super().__init__(f"Invalid transition {action} from {current}")
        self.current = current
        self.action = action


class LiveStartBlocked(TradingError):
    """A live start was refused; ``code`` is the blocking gate"""
    code = "LIVE_START_BLOCKED"


class ArmingError(TradingError):
    code = "ARMING_ERROR"


class DuplicateOrderError(TradingError):
    code = "DUPLICATE_ORDER"

    def __init__(self, client_order_id: str):
        super().__init__(f"Order {client_order_id} already exists")
        self.client_order_id = client_order_id


class ExchangeError(TradingError):
    """Exchange failure normalized to one of the adapter error codes"""
    code = "EXCHANGE_ERROR"


class CircuitOpenError(TradingError):
    code = "CIRCUIT_OPEN"

    def __init__(self, key: str):
        super().__init__(f"Circuit breaker open for {key}")
        self.key = key
