"""
运行记录仓储
"""
from sqlmodel import select, Session
from typing import Any, List, Optional
from datetime import datetime

from botrunner_core.data.models.run import Run
from botrunner_core.utils import get_logger

logger = get_logger("run_repository")

# Runs in these states can never be resumed
TERMINAL_RUN_STATUSES = ("killed",)


class RunRepository:
    """Run 仓储"""

    def __init__(self, session: Session):
        self.session = session

    def create(self, bot_id: int, user_id: str, mode: str, status: str = "stopped") -> Run:
        run = Run(bot_id=bot_id, user_id=user_id, mode=mode, status=status, summary={})
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        logger.info(f"✅ Created run {run.id} for bot {bot_id} ({mode})")
        return run

    def get_by_id(self, run_id: int) -> Optional[Run]:
        return self.session.get(Run, run_id)

    def get_latest(self, bot_id: int) -> Optional[Run]:
        """最近创建的运行记录"""
        statement = (
            select(Run)
            .where(Run.bot_id == bot_id)
            .order_by(Run.created_at.desc(), Run.id.desc())
        )
        return self.session.exec(statement).first()

    def get_active(self, bot_id: int) -> Optional[Run]:
        """The most recent ``running`` run of a bot"""
        statement = (
            select(Run)
            .where(Run.bot_id == bot_id)
            .where(Run.status == "running")
            .order_by(Run.created_at.desc(), Run.id.desc())
        )
        return self.session.exec(statement).first()

    def get_active_live(self, bot_id: int) -> Optional[Run]:
        run = self.get_active(bot_id)
        if run and run.mode == "live":
            return run
        return None

    def get_resumable(self, bot_id: int) -> Optional[Run]:
        """Latest run that is not terminal, if any"""
        run = self.get_latest(bot_id)
        if run and run.status not in TERMINAL_RUN_STATUSES:
            return run
        return None

    def list_for_bot(self, bot_id: int, limit: int = 20) -> List[Run]:
        statement = (
            select(Run)
            .where(Run.bot_id == bot_id)
            .order_by(Run.created_at.desc(), Run.id.desc())
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def update(self, run: Run, **changes: Any) -> Run:
        for key, value in changes.items():
            setattr(run, key, value)
        run.updated_at = datetime.now()
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        return run

    def merge_summary(self, run: Run, **values: Any) -> Run:
        """Update summary keys; the JSON column is reassigned so the change is tracked"""
        summary = dict(run.summary or {})
        summary.update(values)
        return self.update(run, summary=summary)
