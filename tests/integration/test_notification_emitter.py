"""Notification persistence and Redis fan-out."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from cvr.db.models import Notification
from cvr.gamification.schemas import NotificationEvent
from cvr.notifications.emitter import NotificationEmitter, user_channel


def _event(**overrides) -> NotificationEvent:
    data = {
        "user_id": 9,
        "type": "level_up",
        "title": "Level Up!",
        "message": "Level 2: Apprentice (+100 coins)",
        "icon": "\U0001f4d6",
        "metadata": {"new_level": 2},
    }
    data.update(overrides)
    return NotificationEvent(**data)


class TestNotificationEmitter:
    """Test NotificationEmitter.emit."""

    @pytest.mark.asyncio
    async def test_persists_without_redis(self, db_session):
        emitter = NotificationEmitter(None)
        notification = await emitter.emit(db_session, _event())
        await db_session.commit()

        rows = (await db_session.execute(select(Notification))).scalars().all()
        assert len(rows) == 1
        assert rows[0].id == notification.id
        assert rows[0].type == "level_up"
        assert rows[0].is_read is False
        assert rows[0].notification_metadata == {"new_level": 2}

    @pytest.mark.asyncio
    async def test_publishes_to_user_channel(self, db_session):
        redis = AsyncMock()
        emitter = NotificationEmitter(redis)
        notification = await emitter.emit(db_session, _event())

        redis.publish.assert_awaited_once()
        channel, raw = redis.publish.await_args.args
        assert channel == user_channel(9) == "ws:user:9"
        payload = json.loads(raw)
        assert payload["event"] == "notification"
        assert payload["data"]["id"] == str(notification.id)
        assert payload["data"]["type"] == "level_up"
        assert payload["data"]["read"] is False

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, db_session):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        emitter = NotificationEmitter(redis)

        notification = await emitter.emit(db_session, _event())
        assert notification is not None
        assert notification.id is not None

    @pytest.mark.asyncio
    async def test_disabled_emits_nothing(self, db_session):
        redis = AsyncMock()
        emitter = NotificationEmitter(redis, enabled=False)
        assert await emitter.emit(db_session, _event()) is None
        redis.publish.assert_not_awaited()
        assert (await db_session.execute(select(Notification))).scalars().all() == []

    def test_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            _event(type="promo")
