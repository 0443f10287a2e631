"""
Typed command endpoint

Accepts any ControlCommand (discriminated on ``action``) and routes it
through ControlService.dispatch.
"""
from typing import Any

from fastapi import APIRouter, Body, Request

from botrunner_core.trading.commands import ControlCommand
from botrunner_api.dependencies import APIKey, Control, UserId
from botrunner_api.middleware.rate_limiter import CONTROL_LIMIT, limiter
from botrunner_api.schemas.base import APIResponse

router = APIRouter(prefix="/control", tags=["Control"])


@router.post("", response_model=APIResponse[Any])
@limiter.limit(CONTROL_LIMIT)
async def dispatch_command(
    request: Request,
    api_key: APIKey,
    user_id: UserId,
    control: Control,
    command: ControlCommand = Body(...),
):
    """
    Example:
        {"action": "start_bot", "bot_id": 1, "mode": "paper"}
    """
    result = await control.dispatch(command, user_id)
    return APIResponse(data=result.data, message=result.message, trace_id=result.trace_id)
