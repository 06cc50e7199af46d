"""Per-period goals with one-shot completion rewards.

Goals are created lazily for each period date from ``GOAL_TEMPLATES``.
Progress is clamped at the target and a goal completes exactly once. The
tracker returns the rewards of newly completed goals; the caller applies them
through the ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvr.database import upsert_insert
from cvr.db.models import UserGoal
from cvr.exceptions import InvalidArgument
from cvr.gamification.schemas import GoalCompletion
from cvr.gamification.streak_service import activity_date

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly")


@dataclass(frozen=True, slots=True)
class GoalTemplate:
    category: str
    target_value: int
    reward_coins: int
    reward_experience: int


GOAL_TEMPLATES: dict[str, tuple[GoalTemplate, ...]] = {
    "daily": (
        GoalTemplate("lessons", 3, 50, 100),
        GoalTemplate("time_minutes", 30, 30, 75),
        GoalTemplate("xp", 200, 40, 0),
    ),
    "weekly": (
        GoalTemplate("lessons", 15, 150, 300),
        GoalTemplate("time_minutes", 150, 100, 200),
    ),
    "monthly": (
        GoalTemplate("lessons", 50, 500, 1000),
    ),
}


def _check_period(period: str) -> None:
    if period not in PERIODS:
        msg = f"Unknown goal period: {period!r}"
        raise InvalidArgument(msg)


def period_date_for(period: str, now: datetime) -> date:
    """Start date of the period containing ``now`` (UTC).

    daily: the date itself, weekly: the ISO-week Monday, monthly: the 1st.
    """
    _check_period(period)
    day = activity_date(now)
    if period == "weekly":
        return day - timedelta(days=day.weekday())
    if period == "monthly":
        return day.replace(day=1)
    return day


async def ensure_goals(
    db: AsyncSession,
    user_id: int,
    period: str,
    now: datetime,
    templates: Mapping[str, tuple[GoalTemplate, ...]] = GOAL_TEMPLATES,
) -> None:
    """Create the period's goals if they do not exist yet."""
    period_date = period_date_for(period, now)
    rows = [
        {
            "user_id": user_id,
            "period": period,
            "category": tpl.category,
            "target_value": tpl.target_value,
            "current_progress": 0,
            "is_completed": False,
            "period_date": period_date,
            "reward_coins": tpl.reward_coins,
            "reward_experience": tpl.reward_experience,
            "created_at": now,
        }
        for tpl in templates.get(period, ())
    ]
    if not rows:
        return
    await db.execute(
        upsert_insert(db, UserGoal)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["user_id", "period", "category", "period_date"])
    )


async def get_goals(
    db: AsyncSession,
    user_id: int,
    period: str,
    now: datetime,
    *,
    open_only: bool = False,
    lock: bool = False,
) -> list[UserGoal]:
    stmt = select(UserGoal).where(
        UserGoal.user_id == user_id,
        UserGoal.period == period,
        UserGoal.period_date == period_date_for(period, now),
    )
    if open_only:
        stmt = stmt.where(UserGoal.is_completed.is_(False))
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt.order_by(UserGoal.id))
    return list(result.scalars().all())


async def apply_progress(
    db: AsyncSession,
    user_id: int,
    period: str,
    deltas: Mapping[str, int],
    now: datetime | None = None,
) -> list[GoalCompletion]:
    """Add category deltas to the user's open goals for the current period.

    Returns one GoalCompletion per goal that reached its target in this call.
    """
    _check_period(period)
    for category, delta in deltas.items():
        if not isinstance(delta, int) or isinstance(delta, bool) or delta < 0:
            msg = f"Goal delta for {category!r} must be a non-negative integer, got {delta!r}"
            raise InvalidArgument(msg)
    if now is None:
        now = datetime.now(timezone.utc)

    completions: list[GoalCompletion] = []
    for goal in await get_goals(db, user_id, period, now, open_only=True, lock=True):
        delta = deltas.get(goal.category, 0)
        if delta == 0:
            continue
        goal.current_progress = min(goal.target_value, goal.current_progress + delta)
        if not goal.is_completed and goal.current_progress >= goal.target_value:
            goal.is_completed = True
            goal.completed_at = now
            completions.append(
                GoalCompletion(
                    goal_id=goal.id,
                    period=goal.period,
                    category=goal.category,
                    target_value=goal.target_value,
                    reward_coins=goal.reward_coins,
                    reward_experience=goal.reward_experience,
                )
            )
            logger.info("User %d completed %s %s goal", user_id, period, goal.category)

    await db.flush()
    return completions
