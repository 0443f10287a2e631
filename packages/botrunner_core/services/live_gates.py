# packages/botrunner_core/services/live_gates.py
"""
Live trading gates shared by the run state machine, the live execution
engine and the live status endpoint.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from botrunner_core.data.models.run import Run
from botrunner_core.trading.state import LiveEligibility


def cooldown_ends_at(run: Optional[Run], cooldown_seconds: int) -> Optional[datetime]:
    if run is None or run.armed_at is None:
        return None
    return run.armed_at + timedelta(seconds=cooldown_seconds)


def live_start_blockers(
    run: Run,
    live_trading_enabled: bool,
    kill_switch_active: bool,
    cooldown_seconds: int,
    now: datetime,
    require_arming: bool = True,
) -> List[str]:
    """Reasons a run may not start in live mode (empty when allowed)"""
    reasons = []
    if not live_trading_enabled:
        reasons.append("LIVE_TRADING_DISABLED")
    if kill_switch_active:
        reasons.append("KILL_SWITCH_ACTIVE")
    if require_arming:
        if not run.live_armed:
            reasons.append("LIVE_NOT_ARMED")
        ends_at = cooldown_ends_at(run, cooldown_seconds)
        if ends_at is not None and now < ends_at:
            reasons.append("LIVE_COOLDOWN_ACTIVE")
    return reasons


def evaluate_live_eligibility(
    run: Optional[Run],
    live_trading_enabled: bool,
    kill_switch_active: bool,
    secrets_ready: bool,
    cooldown_seconds: int,
    now: datetime,
) -> LiveEligibility:
    """Gate re-checked by the live engine right before every submission"""
    reasons = []

    if not secrets_ready:
        reasons.append("SECRETS_NOT_CONFIGURED")
    if not live_trading_enabled:
        reasons.append("LIVE_TRADING_DISABLED")
    if kill_switch_active:
        reasons.append("KILL_SWITCH_ACTIVE")
    if run is None or run.mode != "live" or run.status != "running":
        reasons.append("NO_ACTIVE_LIVE_RUN")
    if run is None or not run.live_armed:
        reasons.append("LIVE_NOT_ARMED")

    ends_at = cooldown_ends_at(run, cooldown_seconds)
    if ends_at is not None and now < ends_at:
        reasons.append("LIVE_COOLDOWN_ACTIVE")

    return LiveEligibility(allowed=not reasons, reasons=reasons, cooldown_ends_at=ends_at)
