# packages/botrunner_core/data/models/exchange_credential.py
"""
交易所凭证模型
"""
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class ExchangeCredential(SQLModel, table=True):
    """Exchange API credentials referenced by Bot.api_key_id"""
    __tablename__ = "exchange_credentials"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    exchange_type: str = Field(default="kraken")  # ccxt exchange id
    label: Optional[str] = None
    api_key: str
    api_secret: str
    password: Optional[str] = None
    testnet: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)
