"""
Global Exception Handlers
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from botrunner_core.errors import ConflictError, NotFoundError, TradingError
from botrunner_core.utils import get_logger
from botrunner_api.config import settings

logger = get_logger("api")


def trading_error_status(exc: TradingError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 400


def setup_exception_handlers(app: FastAPI):
    """Setup global exception handlers for the FastAPI app"""

    @app.exception_handler(TradingError)
    async def trading_error_handler(request: Request, exc: TradingError):
        """Domain errors carry their own code"""
        status_code = trading_error_status(exc)
        logger.warning(f"⚠️ {request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "error": exc.message,
                "code": exc.code,
                "detail": getattr(exc, "reasons", None),
                "timestamp": datetime.now().isoformat(),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "code": f"HTTP_{exc.status_code}",
                "timestamp": datetime.now().isoformat(),
            },
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors"""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Validation Error",
                "detail": errors,
                "code": "VALIDATION_ERROR",
                "timestamp": datetime.now().isoformat(),
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Handle value errors"""
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": str(exc),
                "code": "VALUE_ERROR",
                "timestamp": datetime.now().isoformat(),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions"""
        logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc!r}", exc_info=True)

        # Return generic error in production
        detail = str(exc) if settings.DEBUG else "An unexpected error occurred"

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal Server Error",
                "detail": detail,
                "code": "INTERNAL_ERROR",
                "timestamp": datetime.now().isoformat(),
            },
        )
