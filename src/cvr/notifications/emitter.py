"""Persist notifications and push them over Redis pub/sub for per-user delivery."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from cvr.db.models import Notification
from cvr.gamification.schemas import NotificationEvent

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)


def user_channel(user_id: int) -> str:
    return f"ws:user:{user_id}"


class NotificationEmitter:
    """Best-effort notification sink.

    Rows are written in the caller's session. Publishing is fire-and-forget:
    a missing Redis client or a publish error is logged and ignored.
    """

    def __init__(self, redis: redis.Redis | None = None, *, enabled: bool = True) -> None:
        self.redis = redis
        self.enabled = enabled

    async def emit(self, db: AsyncSession, event: NotificationEvent) -> Notification | None:
        if not self.enabled:
            return None

        notification = Notification(
            user_id=event.user_id,
            type=event.type,
            title=event.title,
            message=event.message,
            icon=event.icon,
            notification_metadata=event.metadata,
            created_at=datetime.now(timezone.utc),
        )
        db.add(notification)
        await db.flush()  # Assign notification.id for the push payload

        await self.publish(notification)
        return notification

    async def publish(self, notification: Notification) -> None:
        if self.redis is None:
            return

        payload = {
            "event": "notification",
            "data": {
                "id": str(notification.id),
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "icon": notification.icon,
                "metadata": notification.notification_metadata,
                "timestamp": notification.created_at.isoformat() if notification.created_at else None,
                "read": False,
            },
        }
        try:
            await self.redis.publish(user_channel(notification.user_id), json.dumps(payload))
        except Exception:
            logger.warning(
                "Failed to push notification via ws:user:%s",
                notification.user_id,
                exc_info=True,
            )
