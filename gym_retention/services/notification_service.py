"""
In-app notifications addressed to a role (e.g. every ADMIN).
"""
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from gym_retention.models.database_models import Notification
from gym_retention.schemas.schemas import UserRole

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    async def create_for_role(
        db: AsyncSession,
        role: UserRole,
        title: str,
        message: str,
        type: str = "info",
        action_url: Optional[str] = None
    ) -> Notification:
        notification = Notification(
            role=role.value,
            title=title,
            message=message,
            type=type,
            action_url=action_url,
        )
        db.add(notification)
        await db.flush()
        logger.info(f"Notification '{title}' queued for role {role.value}")
        return notification
