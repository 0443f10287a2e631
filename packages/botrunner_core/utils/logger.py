# packages/botrunner_core/utils/logger.py
import logging
import sys
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler

# rich 是可选依赖，没有安装时退回带颜色的标准输出
try:
    from rich.logging import RichHandler
    from rich.console import Console
    RICH_AVAILABLE = True
except ImportError:
    RICH_AVAILABLE = False


LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class TradingLogger:
    """
    Process-wide logger for the bot runner.

    All components log under the ``botrunner`` namespace so a single set of
    handlers (console + rotating files) serves the API, the orchestrator and
    the execution engines.
    """

    _instance: Optional['TradingLogger'] = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, log_dir: str = 'logs'):
        if self._initialized:
            return

        self.logger = logging.getLogger('botrunner')
        self.logger.setLevel(logging.DEBUG)

        if not self.logger.handlers:
            self._setup_handlers(Path(log_dir))
        self._initialized = True

    def _setup_handlers(self, log_dir: Path):
        if RICH_AVAILABLE:
            console_handler = RichHandler(
                console=Console(stderr=True),
                show_time=True,
                show_path=False,
                rich_tracebacks=True,
                markup=False,
            )
        else:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(ColoredFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        console_handler.setLevel(logging.INFO)

        log_dir.mkdir(exist_ok=True)
        file_formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

        file_handler = RotatingFileHandler(
            log_dir / 'botrunner.log',
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)

        # errors also go to their own file
        error_handler = RotatingFileHandler(
            log_dir / 'botrunner_error.log',
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)

        self.logger.addHandler(console_handler)
        self.logger.addHandler(file_handler)
        self.logger.addHandler(error_handler)

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        if name:
            return self.logger.getChild(name)
        return self.logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the ``botrunner`` logger or one of its children"""
    return TradingLogger().get_logger(name)


class LogContext:
    """
    Attach fields (trace_id, bot_id, ...) to every record emitted through
    ``logger`` while the context is active.

    Usage:
        with LogContext(logger, trace_id=trace_id, bot_id=bot.id):
            ...
    """

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context
        self._filter: Optional[logging.Filter] = None

    def __enter__(self):
        context = self.context

        class ContextFilter(logging.Filter):
            def filter(self, record):
                for key, value in context.items():
                    setattr(record, key, value)
                return True

        self._filter = ContextFilter()
        self.logger.addFilter(self._filter)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._filter is not None:
            self.logger.removeFilter(self._filter)
            self._filter = None


__all__ = ['get_logger', 'TradingLogger', 'LogContext']
