"""
Bot Management API Routes
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request, status

from botrunner_core.services.control import new_trace_id
from botrunner_core.trading.commands import BotChanges, CreateBotCommand
from botrunner_api.dependencies import APIKey, Control, UserId
from botrunner_api.middleware.rate_limiter import CONTROL_LIMIT, limiter
from botrunner_api.schemas.base import APIResponse
from botrunner_api.schemas.requests import BotStartRequest

router = APIRouter(prefix="/bots", tags=["Bots"])


# =============================================================================
# List & Get
# =============================================================================

@router.get("", response_model=APIResponse[List[Dict[str, Any]]])
async def list_bots(
    api_key: APIKey,
    user_id: UserId,
    control: Control,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by bot status"),
):
    """
    List the caller's bots
    """
    bots = control.list_bots(user_id, status=status_filter)
    return APIResponse(data=[bot.model_dump() for bot in bots])


@router.get("/{bot_id}", response_model=APIResponse[Dict[str, Any]])
async def get_bot(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    return APIResponse(data=control.get_bot(user_id, bot_id).model_dump())


@router.get("/{bot_id}/status", response_model=APIResponse[Dict[str, Any]])
async def get_bot_status(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    """
    Bot, latest run, open position, recent events and heartbeat health
    """
    return APIResponse(data=control.bot_status(user_id, bot_id))


# =============================================================================
# Create & Update
# =============================================================================

@router.post("", response_model=APIResponse[Dict[str, Any]], status_code=status.HTTP_201_CREATED)
async def create_bot(body: CreateBotCommand, api_key: APIKey, user_id: UserId, control: Control):
    """
    Create a bot (always created stopped)
    """
    trace_id = new_trace_id()
    bot = control.create_bot(user_id, body, trace_id=trace_id)
    return APIResponse(data=bot.model_dump(), message=f"Bot '{bot.name}' created", trace_id=trace_id)


@router.patch("/{bot_id}", response_model=APIResponse[Dict[str, Any]])
async def update_bot(bot_id: int, body: BotChanges, api_key: APIKey, user_id: UserId, control: Control):
    trace_id = new_trace_id()
    bot = control.update_bot(user_id, bot_id, body, trace_id=trace_id)
    return APIResponse(data=bot.model_dump(), message="Bot updated", trace_id=trace_id)


@router.delete("/{bot_id}", response_model=APIResponse[Dict[str, Any]])
async def delete_bot(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    """
    Delete a bot and its history (refused while running)
    """
    return APIResponse(data=control.delete_bot(user_id, bot_id), message="Bot deleted", trace_id=new_trace_id())


# =============================================================================
# Lifecycle
# =============================================================================

@router.post("/{bot_id}/start", response_model=APIResponse[Dict[str, Any]])
@limiter.limit(CONTROL_LIMIT)
async def start_bot(
    request: Request,
    bot_id: int,
    api_key: APIKey,
    user_id: UserId,
    control: Control,
    body: Optional[BotStartRequest] = None,
):
    """
    Start a bot in its mode (or the given one)
    """
    trace_id = new_trace_id()
    data = control.start_bot(user_id, bot_id, mode=body.mode if body else None, trace_id=trace_id)
    return APIResponse(data=data, message="Bot started", trace_id=trace_id)


@router.post("/{bot_id}/pause", response_model=APIResponse[Dict[str, Any]])
async def pause_bot(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    trace_id = new_trace_id()
    return APIResponse(data=control.pause_bot(user_id, bot_id, trace_id=trace_id), message="Bot paused", trace_id=trace_id)


@router.post("/{bot_id}/stop", response_model=APIResponse[Dict[str, Any]])
async def stop_bot(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    trace_id = new_trace_id()
    return APIResponse(data=control.stop_bot(user_id, bot_id, trace_id=trace_id), message="Bot stopped", trace_id=trace_id)


@router.post("/{bot_id}/kill", response_model=APIResponse[Dict[str, Any]])
@limiter.limit(CONTROL_LIMIT)
async def kill_bot(request: Request, bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    """
    Emergency stop: cancel working orders, kill the run, stop the bot
    """
    trace_id = new_trace_id()
    data = await control.kill_bot(user_id, bot_id, trace_id=trace_id)
    return APIResponse(data=data, message="Emergency kill switch activated", trace_id=trace_id)
