"""Stats snapshots consumed by the badge engine.

A snapshot is a flat ``{stat key: int}`` map. The default provider derives it
from the engine's own tables; hosts can merge in counters the engine does not
track (companion interactions, for instance).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Awaitable, Callable, Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvr.db.models import ActivityCompletion, UserGoal, UserProgress, UserStreak
from cvr.gamification.badge_service import StatKey
from cvr.gamification.streak_service import DEFAULT_STREAK_TYPE

LATE_NIGHT_START_HOUR = 22
LATE_NIGHT_END_HOUR = 2
EARLY_MORNING_START_HOUR = 5
EARLY_MORNING_END_HOUR = 7

ExtraCounters = Callable[[AsyncSession, int], Awaitable[Mapping[str, int]]]


class StatsProvider(Protocol):
    async def snapshot(self, db: AsyncSession, user_id: int) -> dict[str, int]: ...


def _as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def is_late_night(ts: datetime) -> bool:
    hour = _as_utc(ts).hour
    return hour >= LATE_NIGHT_START_HOUR or hour < LATE_NIGHT_END_HOUR


def is_early_morning(ts: datetime) -> bool:
    return EARLY_MORNING_START_HOUR <= _as_utc(ts).hour < EARLY_MORNING_END_HOUR


def count_perfect_weeks(daily_goals: list[tuple[date, bool]]) -> int:
    """Count ISO weeks in which every daily goal of all seven days was completed."""
    days: dict[date, bool] = {}
    for period_date, completed in daily_goals:
        days[period_date] = days.get(period_date, True) and completed
    perfect_days_per_week: Counter[date] = Counter(
        day - timedelta(days=day.weekday()) for day, perfect in days.items() if perfect
    )
    return sum(1 for count in perfect_days_per_week.values() if count == 7)


class ActivityStatsProvider:
    """Builds the snapshot from completions, streaks, goals and progress."""

    def __init__(
        self,
        streak_type: str = DEFAULT_STREAK_TYPE,
        extra: ExtraCounters | None = None,
    ) -> None:
        self.streak_type = streak_type
        self.extra = extra

    async def snapshot(self, db: AsyncSession, user_id: int) -> dict[str, int]:
        stats: dict[str, int] = {}

        completed = (
            await db.execute(
                select(ActivityCompletion.completed_at).where(ActivityCompletion.user_id == user_id)
            )
        ).scalars().all()
        stamps = [_as_utc(ts) for ts in completed]
        per_day = Counter(ts.date() for ts in stamps)
        stats[StatKey.LESSONS_COMPLETED.value] = len(stamps)
        stats[StatKey.LESSONS_IN_DAY.value] = max(per_day.values(), default=0)
        stats[StatKey.LATE_NIGHT_LESSONS.value] = sum(1 for ts in stamps if is_late_night(ts))
        stats[StatKey.EARLY_MORNING_LESSONS.value] = sum(1 for ts in stamps if is_early_morning(ts))
        stats[StatKey.WEEKEND_SESSIONS.value] = sum(1 for day in per_day if day.weekday() >= 5)

        streak = (
            await db.execute(
                select(UserStreak).where(
                    UserStreak.user_id == user_id,
                    UserStreak.streak_type == self.streak_type,
                )
            )
        ).scalar_one_or_none()
        stats[StatKey.DAILY_STREAK.value] = streak.current_streak if streak else 0
        stats[StatKey.LONGEST_STREAK.value] = streak.longest_streak if streak else 0

        daily_goals = (
            await db.execute(
                select(UserGoal.period_date, UserGoal.is_completed).where(
                    UserGoal.user_id == user_id,
                    UserGoal.period == "daily",
                )
            )
        ).all()
        stats[StatKey.PERFECT_WEEKS.value] = count_perfect_weeks([(d, c) for d, c in daily_goals])

        progress = await db.get(UserProgress, user_id)
        stats[StatKey.TOTAL_EXPERIENCE.value] = progress.total_experience if progress else 0
        stats[StatKey.LEVEL.value] = progress.level if progress else 1

        if self.extra is not None:
            stats.update(await self.extra(db, user_id))
        return stats
