# packages/botrunner_core/data/models/__init__.py
from .exchange_credential import ExchangeCredential
from .user_profile import UserProfile
from .bot import Bot
from .run import Run
from .order import Order, ORDER_TERMINAL_STATUSES
from .position import Position
from .bot_event import BotEvent

__all__ = [
    'ExchangeCredential',
    'UserProfile',
    'Bot',
    'Run',
    'Order',
    'ORDER_TERMINAL_STATUSES',
    'Position',
    'BotEvent',
]
