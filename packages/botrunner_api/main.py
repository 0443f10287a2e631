"""
BotRunner API - FastAPI Application Entry Point

- API Key 认证 + X-User-Id 调用者身份
- 速率限制（控制类操作更严格）
- 可选的进程内 tick 调度器
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from botrunner_core.data import init_db
from botrunner_api import __version__
from botrunner_api.config import settings
from botrunner_api.dependencies import get_orchestrator
from botrunner_api.middleware.error_handler import setup_exception_handlers
from botrunner_api.middleware.rate_limiter import limiter, rate_limit_exceeded_handler
from botrunner_api.routes.v1 import router as v1_router
from botrunner_api.services.tick_scheduler import TickScheduler


# =============================================================================
# OpenAPI Tags Metadata
# =============================================================================

tags_metadata = [
    {"name": "Health", "description": "Health check endpoints for monitoring and Kubernetes probes."},
    {"name": "Bots", "description": "Bot management - create, configure, start/pause/stop/kill."},
    {"name": "Runs", "description": "Run state machine transitions and single ticks."},
    {"name": "Live", "description": "Live trading arming and the user kill switch."},
    {"name": "Control", "description": "Typed command endpoint (one body per control operation)."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # Startup
    init_db()
    scheduler = None
    if settings.TICK_SCHEDULER_ENABLED:
        scheduler = TickScheduler(get_orchestrator(), settings.TICK_INTERVAL_SECONDS)
        scheduler.start()
    app.state.tick_scheduler = scheduler
    yield
    # Shutdown
    if scheduler is not None:
        await scheduler.stop()


# =============================================================================
# FastAPI Application
# =============================================================================

API_DESCRIPTION = """
# BotRunner API

Run lifecycle and trade execution for paper and live trading bots.

## Authentication

All endpoints (except `/api/v1/health`) require an API Key and the caller id:

```bash
curl -H "X-API-Key: your-api-key" -H "X-User-Id: alice" http://localhost:8000/api/v1/bots
```

## Live trading

1. `POST /api/v1/bots/{bot_id}/start` with `{"mode": "live"}`
2. `POST /api/v1/live/{bot_id}/request-arm` (token is returned once)
3. `POST /api/v1/live/{bot_id}/confirm-arm` with the token
4. Orders are accepted after the cooldown ends

## Errors

```json
{
  "success": false,
  "error": "Live start blocked",
  "detail": ["LIVE_NOT_ARMED"],
  "code": "LIVE_NOT_ARMED",
  "timestamp": "2024-01-01T00:00:00"
}
```
"""

app = FastAPI(
    title=settings.APP_NAME,
    description=API_DESCRIPTION,
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# =============================================================================
# Rate Limiting
# =============================================================================

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# =============================================================================
# Middleware
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["X-API-Key", "X-User-Id", "Content-Type"],
)

setup_exception_handlers(app)

# =============================================================================
# Routes
# =============================================================================

app.include_router(v1_router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint - returns API information"""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "health": "/api/v1/health",
        "rate_limit": f"{settings.RATE_LIMIT_PER_MINUTE}/minute",
    }


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the API server (for CLI usage)"""
    import uvicorn
    uvicorn.run(
        "botrunner_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run_server()
