"""
Live Trading Controls

request-arm -> confirm-arm (two-step, token shown once) + kill switch
"""
from typing import Any, Dict

from fastapi import APIRouter, Request

from botrunner_core.services.control import new_trace_id
from botrunner_api.dependencies import APIKey, Control, UserId
from botrunner_api.middleware.rate_limiter import CONTROL_LIMIT, limiter
from botrunner_api.schemas.base import APIResponse
from botrunner_api.schemas.requests import ConfirmArmRequest, KillSwitchRequest

router = APIRouter(prefix="/live", tags=["Live"])


@router.post("/kill-switch", response_model=APIResponse[Dict[str, Any]])
@limiter.limit(CONTROL_LIMIT)
async def set_kill_switch(request: Request, body: KillSwitchRequest, api_key: APIKey, user_id: UserId, control: Control):
    data = control.set_kill_switch(user_id, body.enabled)
    return APIResponse(data=data, message="Kill switch updated", trace_id=new_trace_id())


@router.post("/{bot_id}/request-arm", response_model=APIResponse[Dict[str, Any]])
@limiter.limit(CONTROL_LIMIT)
async def request_arm(request: Request, bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    """
    Issue an arming token for the bot's active live run (returned only here)
    """
    data = control.request_arm(user_id, bot_id)
    return APIResponse(data=data, message="Confirm with the token to arm live trading", trace_id=new_trace_id())


@router.post("/{bot_id}/confirm-arm", response_model=APIResponse[Dict[str, Any]])
@limiter.limit(CONTROL_LIMIT)
async def confirm_arm(
    request: Request,
    bot_id: int,
    body: ConfirmArmRequest,
    api_key: APIKey,
    user_id: UserId,
    control: Control,
):
    data = control.confirm_arm(user_id, bot_id, body.token)
    return APIResponse(data=data, message="Live trading armed", trace_id=new_trace_id())


@router.get("/{bot_id}/status", response_model=APIResponse[Dict[str, Any]])
async def live_status(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    return APIResponse(data=control.live_status(user_id, bot_id))
