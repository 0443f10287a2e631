from .bot import BotRepository
from .run import RunRepository, TERMINAL_RUN_STATUSES
from .order import OrderRepository
from .position import PositionRepository
from .bot_event import BotEventRepository
from .user_profile import UserProfileRepository
from .exchange_credential import ExchangeCredentialRepository

__all__ = [
    "BotRepository",
    "RunRepository",
    "TERMINAL_RUN_STATUSES",
    "OrderRepository",
    "PositionRepository",
    "BotEventRepository",
    "UserProfileRepository",
    "ExchangeCredentialRepository",
]
