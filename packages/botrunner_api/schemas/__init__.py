"""
API Schemas - Pydantic models for request/response
"""
from botrunner_api.schemas.base import (
    APIResponse,
    ErrorResponse,
    HealthResponse,
)
from botrunner_api.schemas.requests import (
    BotStartRequest,
    RunCreateRequest,
    TransitionRequest,
    ConfirmArmRequest,
    KillSwitchRequest,
)

__all__ = [
    # Base
    "APIResponse",
    "ErrorResponse",
    "HealthResponse",
    # Requests
    "BotStartRequest",
    "RunCreateRequest",
    "TransitionRequest",
    "ConfirmArmRequest",
    "KillSwitchRequest",
]
