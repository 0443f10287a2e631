"""
Run API Routes
"""
from typing import Any, Dict

from fastapi import APIRouter, status

from botrunner_core.services.control import new_trace_id
from botrunner_api.dependencies import APIKey, Control, UserId
from botrunner_api.schemas.base import APIResponse
from botrunner_api.schemas.requests import RunCreateRequest, TransitionRequest

router = APIRouter(prefix="/runs", tags=["Runs"])


@router.post("", response_model=APIResponse[Dict[str, Any]], status_code=status.HTTP_201_CREATED)
async def create_run(body: RunCreateRequest, api_key: APIKey, user_id: UserId, control: Control):
    run = control.create_run(user_id, body.bot_id, mode=body.mode)
    return APIResponse(data=run.model_dump(), message="Run created", trace_id=new_trace_id())


@router.post("/{bot_id}/transition", response_model=APIResponse[Dict[str, Any]])
async def request_transition(
    bot_id: int,
    body: TransitionRequest,
    api_key: APIKey,
    user_id: UserId,
    control: Control,
):
    """
    Apply start / pause / stop / kill to the bot's open run
    """
    trace_id = new_trace_id()
    run = control.request_transition(user_id, bot_id, body.action, mode=body.mode, trace_id=trace_id)
    return APIResponse(data=run.model_dump(), message=f"Run {run.status}", trace_id=trace_id)


@router.post("/{bot_id}/tick", response_model=APIResponse[Dict[str, Any]])
async def run_one_tick(bot_id: int, api_key: APIKey, user_id: UserId, control: Control):
    """
    Run the tick pipeline once for this bot
    """
    trace_id = new_trace_id()
    result = await control.run_one_tick(user_id, bot_id, trace_id=trace_id)
    return APIResponse(data=result.model_dump(), message=f"Tick {result.status}", trace_id=trace_id)
