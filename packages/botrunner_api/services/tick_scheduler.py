"""
Tick Scheduler
Runs TickOrchestrator.tick_all on a fixed interval inside the API process

每个周期结束后等待 TICK_INTERVAL_SECONDS；单个周期的异常只记录日志，
不会终止调度循环（每个 bot 的异常已经在 orchestrator 内部隔离）。
"""
import asyncio
from typing import Optional

from botrunner_core.services.orchestrator import TickOrchestrator
from botrunner_core.utils import get_logger

logger = get_logger("tick_scheduler")


class TickScheduler:
    def __init__(self, orchestrator: TickOrchestrator, interval_seconds: float = 60.0):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.is_running:
            raise ValueError("Tick scheduler is already running")
        self._task = asyncio.create_task(self._loop())
        logger.info(f"🚀 Tick scheduler started (every {self.interval_seconds}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("🛑 Tick scheduler stopped")

    async def _loop(self):
        while True:
            self.cycles += 1
            try:
                summary = await self.orchestrator.tick_all()
                logger.info(
                    f"📊 Cycle {self.cycles}: {summary.processed} bots, "
                    f"{summary.successful} ok, {summary.failed} failed"
                )
            except Exception as e:
                logger.error(f"❌ Tick cycle {self.cycles} failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
