"""
Base API Response Models
"""
from pydantic import BaseModel, Field
from typing import Any, Generic, TypeVar, Optional
from datetime import datetime

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """
    Standard API response wrapper

    Example:
        {
            "success": true,
            "data": {...},
            "message": "Bot started",
            "trace_id": "5f0c...",
            "timestamp": "2024-01-01T00:00:00"
        }
    """
    success: bool = True
    data: T
    message: Optional[str] = None
    trace_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ErrorResponse(BaseModel):
    """
    Error response model

    Example:
        {
            "success": false,
            "error": "Bot 123 not found",
            "code": "BOT_NOT_FOUND",
            "timestamp": "2024-01-01T00:00:00"
        }
    """
    success: bool = False
    error: str
    detail: Optional[Any] = None
    code: str
    timestamp: datetime = Field(default_factory=datetime.now)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    version: str
    environment: str
    database: str = "connected"
    tick_scheduler: bool = False
    timestamp: datetime = Field(default_factory=datetime.now)
