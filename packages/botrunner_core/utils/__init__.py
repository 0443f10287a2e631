# packages/botrunner_core/utils/__init__.py
from .logger import get_logger, TradingLogger, LogContext

__all__ = ["get_logger", "TradingLogger", "LogContext"]
