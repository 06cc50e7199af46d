"""Per-period goals: lazy creation, clamping and one-shot completion."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from cvr.db.models import UserGoal, UserWallet
from cvr.exceptions import InvalidArgument
from cvr.gamification.goal_service import GoalTemplate, apply_progress, ensure_goals, get_goals


class TestEnsureGoals:
    """Test ensure_goals."""

    @pytest.mark.asyncio
    async def test_creates_daily_templates(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        goals = await get_goals(db_session, 1, "daily", now)
        assert {(g.category, g.target_value) for g in goals} == {
            ("lessons", 3),
            ("time_minutes", 30),
            ("xp", 200),
        }
        assert all(g.current_progress == 0 and not g.is_completed for g in goals)

    @pytest.mark.asyncio
    async def test_idempotent(self, db_session, now):
        await ensure_goals(db_session, 1, "weekly", now)
        await ensure_goals(db_session, 1, "weekly", now + timedelta(days=1))
        count = (await db_session.execute(select(func.count()).select_from(UserGoal))).scalar_one()
        assert count == 2

    @pytest.mark.asyncio
    async def test_new_period_new_goals(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        await ensure_goals(db_session, 1, "daily", now + timedelta(days=1))
        count = (await db_session.execute(select(func.count()).select_from(UserGoal))).scalar_one()
        assert count == 6

    @pytest.mark.asyncio
    async def test_custom_templates(self, db_session, now):
        templates = {"daily": (GoalTemplate("lessons", 1, 5, 5),)}
        await ensure_goals(db_session, 1, "daily", now, templates)
        await ensure_goals(db_session, 1, "monthly", now, templates)
        goals = (await db_session.execute(select(UserGoal))).scalars().all()
        assert len(goals) == 1


class TestApplyProgress:
    """Test apply_progress."""

    @pytest.mark.asyncio
    async def test_accumulates(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        completions = await apply_progress(db_session, 1, "daily", {"lessons": 1, "time_minutes": 12}, now)
        assert completions == []
        goals = {g.category: g for g in await get_goals(db_session, 1, "daily", now)}
        assert goals["lessons"].current_progress == 1
        assert goals["time_minutes"].current_progress == 12
        assert goals["xp"].current_progress == 0

    @pytest.mark.asyncio
    async def test_clamps_and_completes_once(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        first = await apply_progress(db_session, 1, "daily", {"lessons": 5}, now)
        assert len(first) == 1
        assert first[0].category == "lessons"
        assert first[0].reward_coins == 50
        assert first[0].reward_experience == 100

        second = await apply_progress(db_session, 1, "daily", {"lessons": 5}, now + timedelta(hours=1))
        assert second == []

        lessons = next(g for g in await get_goals(db_session, 1, "daily", now) if g.category == "lessons")
        assert lessons.current_progress == lessons.target_value == 3
        assert lessons.is_completed
        assert lessons.completed_at is not None
        assert lessons.completed_at.hour == now.hour

    @pytest.mark.asyncio
    async def test_reaching_target_exactly(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        await apply_progress(db_session, 1, "daily", {"time_minutes": 20}, now)
        completions = await apply_progress(db_session, 1, "daily", {"time_minutes": 10}, now)
        assert [c.category for c in completions] == ["time_minutes"]

    @pytest.mark.asyncio
    async def test_other_period_untouched(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        await ensure_goals(db_session, 1, "weekly", now)
        await apply_progress(db_session, 1, "daily", {"lessons": 2}, now)
        weekly = await get_goals(db_session, 1, "weekly", now)
        assert all(g.current_progress == 0 for g in weekly)

    @pytest.mark.asyncio
    async def test_never_touches_wallet(self, db_session, now):
        await ensure_goals(db_session, 1, "daily", now)
        await apply_progress(db_session, 1, "daily", {"lessons": 3, "xp": 500}, now)
        assert await db_session.get(UserWallet, 1) is None

    @pytest.mark.asyncio
    async def test_without_goals_returns_nothing(self, db_session, now):
        assert await apply_progress(db_session, 1, "daily", {"lessons": 3}, now) == []

    @pytest.mark.asyncio
    async def test_negative_delta_rejected(self, db_session, now):
        with pytest.raises(InvalidArgument):
            await apply_progress(db_session, 1, "daily", {"lessons": -1}, now)

    @pytest.mark.asyncio
    async def test_unknown_period_rejected(self, db_session, now):
        with pytest.raises(InvalidArgument):
            await apply_progress(db_session, 1, "hourly", {"lessons": 1}, now)
