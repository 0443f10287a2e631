"""
API v1 Routes

- health: 健康检查
- bots: Bot 管理与生命周期
- runs: Run 状态机 / 单次 tick
- live: 实盘 arming 与 kill switch
- control: 统一命令入口
"""
from fastapi import APIRouter

from botrunner_api.routes.v1.health import router as health_router
from botrunner_api.routes.v1.bots import router as bots_router
from botrunner_api.routes.v1.runs import router as runs_router
from botrunner_api.routes.v1.live import router as live_router
from botrunner_api.routes.v1.control import router as control_router

router = APIRouter()

router.include_router(health_router)
router.include_router(bots_router)
router.include_router(runs_router)
router.include_router(live_router)
router.include_router(control_router)
