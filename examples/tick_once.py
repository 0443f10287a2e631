# examples/tick_once.py
"""
单次 tick 入口（适合 cron 调用）
对所有 running 状态的 bot 执行一次完整的 tick 流水线
"""
import sys
from pathlib import Path
import asyncio

# add packages directory to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "packages"))

from botrunner_core.config import get_settings
from botrunner_core.data import init_db
from botrunner_core.services.orchestrator import TickOrchestrator
from botrunner_core.utils import get_logger

logger = get_logger("tick_once")


async def main():
    init_db()
    orchestrator = TickOrchestrator(get_settings())
    summary = await orchestrator.tick_all()

    logger.info(f"✅ Tick done: {summary.processed} processed, {summary.successful} ok, {summary.failed} failed")
    for result in summary.results:
        if result.status == "error":
            logger.warning(f"⚠️ Bot {result.bot_id}: {result.error}")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
