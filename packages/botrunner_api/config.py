"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings, NoDecode
from pydantic import field_validator
from typing import Annotated, List, Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "BotRunner API"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Security
    API_KEYS: Annotated[List[str], NoDecode] = ["dev-key-123"]

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 120

    # Optional: Redis (slowapi storage)
    REDIS_URL: Optional[str] = None

    # Background tick loop (off: ticks come from an external cron)
    TICK_SCHEDULER_ENABLED: bool = False
    TICK_INTERVAL_SECONDS: int = 60

    @field_validator("API_KEYS", "CORS_ORIGINS", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        """Parse comma-separated string into list"""
        if isinstance(v, str):
            return [x.strip() for x in v.split(",") if x.strip()]
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
