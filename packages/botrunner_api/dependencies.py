"""
Dependency Injection for FastAPI
Integrates with botrunner_core services
"""
from functools import lru_cache
from typing import Annotated, Generator

from fastapi import Depends, HTTPException, Header, status
from sqlmodel import Session

from botrunner_core.config import TradingSettings, get_settings as get_trading_settings
from botrunner_core.data import SessionLocal
from botrunner_core.services.control import ControlService
from botrunner_core.services.orchestrator import TickOrchestrator
from botrunner_api.config import settings


# =============================================================================
# Database Session
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# Authentication
# =============================================================================

async def validate_api_key(
    x_api_key: str = Header(..., description="API Key for authentication")
) -> str:
    """
    Validate API Key from header

    Usage:
        @router.get("/protected")
        async def protected_route(api_key: APIKey):
            ...
    """
    if x_api_key not in settings.API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API Key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return x_api_key


async def get_current_user(
    x_user_id: str = Header(..., min_length=1, description="Caller identity")
) -> str:
    """Identity of the caller; every bot lookup is scoped to it"""
    return x_user_id.strip()


# =============================================================================
# Service Dependencies
# =============================================================================

@lru_cache()
def get_orchestrator() -> TickOrchestrator:
    """Shared orchestrator (owns the breaker registry for the process)"""
    return TickOrchestrator(get_trading_settings())


def get_control_service(
    db: Annotated[Session, Depends(get_db)],
    trading_settings: Annotated[TradingSettings, Depends(get_trading_settings)],
    orchestrator: Annotated[TickOrchestrator, Depends(get_orchestrator)],
) -> ControlService:
    """Get ControlService instance"""
    return ControlService(db, trading_settings, orchestrator=orchestrator)


# =============================================================================
# Type Aliases for Clean Route Signatures
# =============================================================================

DbSession = Annotated[Session, Depends(get_db)]
APIKey = Annotated[str, Depends(validate_api_key)]
UserId = Annotated[str, Depends(get_current_user)]
Control = Annotated[ControlService, Depends(get_control_service)]
