"""Streak tracking: consecutive-day activity with freezes.

Calendar days are UTC dates. The state machine is implicit in
``current_streak`` and ``last_activity_date``:

- no row: create at 1
- same day: no-op
- next day: +1, milestone on every multiple of 7
- gap > 1 day: consume a freeze if one is available, else reset to 1
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvr.database import upsert_insert
from cvr.db.models import UserStreak
from cvr.exceptions import InvalidArgument
from cvr.gamification.schemas import StreakUpdate

logger = logging.getLogger(__name__)

DEFAULT_STREAK_TYPE = "daily_lesson"
DEFAULT_FREEZES = 2
MILESTONE_INTERVAL = 7


def activity_date(now: datetime) -> date:
    """UTC calendar date of ``now``. Naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(timezone.utc).date()


def _snapshot(streak: UserStreak, **flags: object) -> StreakUpdate:
    return StreakUpdate(
        streak_type=streak.streak_type,
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        last_activity_date=streak.last_activity_date,
        freezes_available=streak.freezes_available,
        freezes_used=streak.freezes_used,
        **flags,
    )


async def get_streak(
    db: AsyncSession,
    user_id: int,
    streak_type: str = DEFAULT_STREAK_TYPE,
    *,
    lock: bool = False,
) -> UserStreak | None:
    stmt = select(UserStreak).where(
        UserStreak.user_id == user_id,
        UserStreak.streak_type == streak_type,
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def record_activity(
    db: AsyncSession,
    user_id: int,
    streak_type: str = DEFAULT_STREAK_TYPE,
    now: datetime | None = None,
    *,
    initial_freezes: int = DEFAULT_FREEZES,
) -> StreakUpdate:
    """Record a qualifying activity and return the resulting streak snapshot."""
    if now is None:
        now = datetime.now(timezone.utc)
    today = activity_date(now)

    streak = await get_streak(db, user_id, streak_type, lock=True)
    if streak is None:
        result = await db.execute(
            upsert_insert(db, UserStreak)
            .values(
                user_id=user_id,
                streak_type=streak_type,
                current_streak=1,
                longest_streak=1,
                last_activity_date=today,
                streak_start_date=today,
                freezes_available=initial_freezes,
                freezes_granted=initial_freezes,
                freezes_used=0,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "streak_type"])
            .returning(UserStreak.id)
        )
        created = result.scalar_one_or_none() is not None
        streak = await get_streak(db, user_id, streak_type, lock=True)
        if created:
            return _snapshot(streak, created=True)

    # Row exists but has never seen activity (e.g. freezes granted up front)
    if streak.last_activity_date is None:
        streak.current_streak = 1
        streak.longest_streak = max(streak.longest_streak, 1)
        streak.last_activity_date = today
        streak.streak_start_date = today
        streak.updated_at = now
        await db.flush()
        return _snapshot(streak, created=True)

    days_since = (today - streak.last_activity_date).days

    if days_since <= 0:
        # Same calendar day, or an activity older than the last one recorded
        return _snapshot(streak)

    if days_since == 1:
        streak.current_streak += 1
        streak.longest_streak = max(streak.longest_streak, streak.current_streak)
        streak.last_activity_date = today
        streak.updated_at = now
        await db.flush()
        milestone = streak.current_streak if streak.current_streak % MILESTONE_INTERVAL == 0 else None
        if milestone:
            logger.info("User %d reached %d-day %s streak", user_id, milestone, streak_type)
        return _snapshot(streak, incremented=True, milestone=milestone)

    if streak.freezes_available > 0:
        streak.freezes_available -= 1
        streak.freezes_used += 1
        streak.last_activity_date = today
        streak.updated_at = now
        await db.flush()
        logger.info(
            "User %d used a streak freeze to cover %d missed days (%d left)",
            user_id, days_since - 1, streak.freezes_available,
        )
        return _snapshot(streak, freeze_consumed=True)

    logger.info("User %d %s streak reset after %d days", user_id, streak_type, days_since)
    streak.current_streak = 1
    streak.last_activity_date = today
    streak.streak_start_date = today
    streak.updated_at = now
    await db.flush()
    return _snapshot(streak, reset=True)


def streak_status(streak: UserStreak | None, today: date) -> str:
    """Return ``none``, ``active``, ``at_risk`` or ``broken`` for display.

    Active means activity today, at risk means the last activity was
    yesterday, broken means at least one full day was missed.
    """
    if streak is None or streak.last_activity_date is None:
        return "none"
    days_since = (today - streak.last_activity_date).days
    if days_since <= 0:
        return "active"
    if days_since == 1:
        return "at_risk"
    return "broken"


async def grant_freezes(
    db: AsyncSession,
    user_id: int,
    count: int,
    streak_type: str = DEFAULT_STREAK_TYPE,
) -> UserStreak:
    """Add ``count`` freezes to a user's streak, creating an empty streak if needed."""
    if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
        msg = f"Freeze count must be a positive integer, got {count!r}"
        raise InvalidArgument(msg)

    streak = await get_streak(db, user_id, streak_type, lock=True)
    if streak is None:
        await db.execute(
            upsert_insert(db, UserStreak)
            .values(
                user_id=user_id,
                streak_type=streak_type,
                current_streak=0,
                longest_streak=0,
                freezes_available=0,
                freezes_granted=0,
                freezes_used=0,
                updated_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["user_id", "streak_type"])
        )
        streak = await get_streak(db, user_id, streak_type, lock=True)

    streak.freezes_available += count
    streak.freezes_granted += count
    streak.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return streak
