from sqlmodel import Session
from typing import Optional
from datetime import datetime

from botrunner_core.data.models.user_profile import UserProfile
from botrunner_core.utils import get_logger

logger = get_logger("user_profile_repository")


class UserProfileRepository:
    """User profile / kill switch 仓储"""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[UserProfile]:
        return self.session.get(UserProfile, user_id)

    def get_or_create(self, user_id: str) -> UserProfile:
        profile = self.get(user_id)
        if profile is None:
            profile = UserProfile(user_id=user_id)
            self.session.add(profile)
            self.session.commit()
            self.session.refresh(profile)
        return profile

    def is_kill_switch_active(self, user_id: str) -> bool:
        profile = self.get(user_id)
        return bool(profile and profile.global_kill_switch)

    def set_kill_switch(self, user_id: str, enabled: bool, at: Optional[datetime] = None) -> UserProfile:
        profile = self.get_or_create(user_id)
        now = at or datetime.now()
        profile.global_kill_switch = enabled
        profile.kill_switch_activated_at = now if enabled else None
        profile.updated_at = now
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        if enabled:
            logger.warning(f"🚨 Kill switch activated for user {user_id}")
        else:
            logger.info(f"✅ Kill switch cleared for user {user_id}")
        return profile
