from sqlmodel import select, Session
from sqlalchemy import delete as sa_delete
from botrunner_core.data.models import Bot, BotEvent, Order, Position, Run
from typing import Any, List, Optional
from botrunner_core.utils import get_logger
from datetime import datetime

logger = get_logger("bot_repository")


class BotRepository:
    """Bot 仓储"""

    def __init__(self, session: Session):
        self.session = session

    def create(self, **kwargs) -> Bot:
        """创建机器人"""
        bot = Bot(**kwargs)
        self.session.add(bot)
        self.session.commit()
        self.session.refresh(bot)
        logger.info(f"✅ Created bot: {bot.name} (id={bot.id})")
        return bot

    def get_by_id(self, bot_id: int) -> Optional[Bot]:
        """通过ID获取机器人"""
        return self.session.get(Bot, bot_id)

    def get_for_user(self, bot_id: int, user_id: str) -> Optional[Bot]:
        """Get a bot only if it belongs to ``user_id``"""
        statement = select(Bot).where(Bot.id == bot_id).where(Bot.user_id == user_id)
        bot = self.session.exec(statement).first()
        if not bot:
            logger.warning(f"🔍 Bot {bot_id} not found for user {user_id}")
        return bot

    def list_for_user(self, user_id: str, status: Optional[str] = None) -> List[Bot]:
        statement = select(Bot).where(Bot.user_id == user_id)
        if status:
            statement = statement.where(Bot.status == status)
        statement = statement.order_by(Bot.created_at.desc())
        return list(self.session.exec(statement).all())

    def get_running_bots(self) -> List[Bot]:
        """获取所有运行中的机器人"""
        statement = select(Bot).where(Bot.status == "running")
        bots = list(self.session.exec(statement).all())
        if bots:
            logger.info(f"✅ Got running bots: {len(bots)}")
        return bots

    def update(self, bot: Bot, **changes: Any) -> Bot:
        """更新机器人"""
        for key, value in changes.items():
            setattr(bot, key, value)
        bot.updated_at = datetime.now()
        self.session.add(bot)
        self.session.commit()
        self.session.refresh(bot)
        logger.debug(f"Updated bot {bot.id}: {sorted(changes)}")
        return bot

    def delete(self, bot: Bot):
        """删除机器人及其运行记录、订单、持仓和事件"""
        for model in (Position, Order, BotEvent, Run):
            self.session.execute(sa_delete(model).where(model.bot_id == bot.id))
        self.session.delete(bot)
        self.session.commit()
        logger.info(f"✅ Deleted bot: {bot.name} (id={bot.id})")
