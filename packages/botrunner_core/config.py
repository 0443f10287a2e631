"""
Trading engine settings (Pydantic Settings)

Every service receives a TradingSettings instance explicitly; get_settings()
is only the process-wide default used by the API and scripts.
"""
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class TradingSettings(BaseSettings):
    """Engine configuration loaded from environment variables / .env"""

    # Database
    DATABASE_URL: str = "sqlite:///./botrunner.db"

    # Live trading gates
    LIVE_TRADING_ENABLED: bool = False
    KILL_SWITCH_ENABLED: bool = True  # system-wide kill switch
    LIVE_ARM_COOLDOWN_SECONDS: int = 60
    LIVE_CIRCUIT_BREAKER_THRESHOLD: int = 3

    # Fees
    PAPER_FEE_RATE: float = 0.001
    LIVE_FEE_BPS: float = 10.0
    LIVE_SLIPPAGE_BPS: float = 8.0

    # Risk guardrails
    MAX_TRADES_PER_HOUR: int = 5
    TRADE_WINDOW_MINUTES: int = 60
    MAX_CONSECUTIVE_LOSSES: int = 3
    COOLDOWN_MINUTES_AFTER_LOSS: int = 30

    # AI advisory
    AI_ENABLED: bool = False
    AI_PROVIDER: str = "openai"
    AI_MODEL: str = "gpt-4o-mini"
    AI_API_KEY: Optional[str] = None
    AI_BASE_URL: Optional[str] = None
    AI_CONFIDENCE_THRESHOLD: float = 0.55
    AI_TIMEOUT_SECONDS: float = 8.0
    AI_MAX_RETRIES: int = 2
    AI_BACKOFF_SECONDS: float = 0.5

    # Exchange / market data
    MARKET_DATA_EXCHANGE: str = "kraken"
    EXCHANGE_TIMEOUT_SECONDS: float = 10.0
    EXCHANGE_MAX_RETRIES: int = 2
    EXCHANGE_BACKOFF_SECONDS: float = 0.5

    # Per-collaborator circuit breakers
    BREAKER_FAILURE_THRESHOLD: int = 3
    BREAKER_RESET_SECONDS: float = 60.0

    # Orchestrator
    MAX_BOT_ERRORS: int = 5
    HEARTBEAT_SAMPLE_MINUTES: int = 10
    HEALTHY_HEARTBEAT_SECONDS: int = 120

    @field_validator("LIVE_CIRCUIT_BREAKER_THRESHOLD", "MAX_CONSECUTIVE_LOSSES", "HEARTBEAT_SAMPLE_MINUTES")
    @classmethod
    def at_least_one(cls, v):
        """Thresholds below 1 would trip on every call"""
        return max(1, int(v))

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> TradingSettings:
    """Get cached settings instance"""
    return TradingSettings()
