"""Badge evaluation and race-safe awarding.

A badge's ``conditions`` map stat keys to thresholds and every condition must
hold (AND). Only keys in ``StatKey`` are understood; an unknown key, a key
missing from the stats snapshot, or a non-integer value fails the condition
instead of raising. Awards are an INSERT ... ON CONFLICT DO NOTHING on
``(user_id, badge_id)``, so concurrent evaluations award a badge at most once.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvr.database import upsert_insert
from cvr.db.models import BadgeDefinition, UserBadge
from cvr.gamification.schemas import BadgeAward
from cvr.gamification.seed import BadgeCatalog

logger = logging.getLogger(__name__)


class StatKey(str, enum.Enum):
    LESSONS_COMPLETED = "lessons_completed"
    DAILY_STREAK = "daily_streak"
    LONGEST_STREAK = "longest_streak"
    LESSONS_IN_DAY = "lessons_in_day"
    LATE_NIGHT_LESSONS = "late_night_lessons"
    EARLY_MORNING_LESSONS = "early_morning_lessons"
    WEEKEND_SESSIONS = "weekend_sessions"
    PERFECT_WEEKS = "perfect_weeks"
    COMPANION_INTERACTIONS = "companion_interactions"
    TOTAL_EXPERIENCE = "total_experience"
    LEVEL = "level"


Matcher = Callable[[int, int], bool]


def at_least(value: int, threshold: int) -> bool:
    return value >= threshold


STAT_MATCHERS: dict[StatKey, Matcher] = {key: at_least for key in StatKey}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def condition_met(key: str, threshold: Any, stats: Mapping[str, Any]) -> bool:
    """Check a single stat condition. Never raises."""
    try:
        stat = StatKey(key)
    except ValueError:
        logger.debug("Unknown stat key in badge condition: %s", key)
        return False
    value = stats.get(stat.value)
    if not _is_int(value) or not _is_int(threshold):
        return False
    return STAT_MATCHERS[stat](value, threshold)


def conditions_met(conditions: Mapping[str, Any], stats: Mapping[str, Any]) -> bool:
    """All conditions hold. A badge without conditions never matches."""
    if not conditions:
        return False
    return all(condition_met(key, threshold, stats) for key, threshold in conditions.items())


def _to_award(badge: BadgeDefinition) -> BadgeAward:
    return BadgeAward(
        badge_id=badge.id,
        slug=badge.slug,
        name=badge.name,
        icon=badge.icon,
        rarity=badge.rarity,
        xp_reward=badge.xp_reward,
        coins_reward=badge.coins_reward,
    )


class BadgeEngine:
    """Evaluates a stats snapshot against an injected badge catalog."""

    def __init__(self, catalog: BadgeCatalog | None = None) -> None:
        self.catalog = catalog if catalog is not None else BadgeCatalog()

    async def held_badge_ids(self, db: AsyncSession, user_id: int) -> set[int]:
        result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
        return set(result.scalars().all())

    async def candidates(
        self,
        db: AsyncSession,
        user_id: int,
        stats: Mapping[str, Any],
    ) -> list[BadgeDefinition]:
        """Active badges the user does not hold yet and whose conditions are met."""
        held = await self.held_badge_ids(db, user_id)
        return [
            badge
            for badge in await self.catalog.active_badges(db)
            if badge.id not in held and conditions_met(badge.conditions, stats)
        ]

    async def award(
        self,
        db: AsyncSession,
        user_id: int,
        badge: BadgeDefinition,
        now: datetime | None = None,
    ) -> BadgeAward | None:
        """Insert the user badge. Returns None if the user already holds it."""
        if now is None:
            now = datetime.now(timezone.utc)
        result = await db.execute(
            upsert_insert(db, UserBadge)
            .values(user_id=user_id, badge_id=badge.id, earned_at=now)
            .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
            .returning(UserBadge.id)
        )
        if result.scalar_one_or_none() is None:
            return None
        logger.info("User %d earned badge %s", user_id, badge.slug)
        return _to_award(badge)

    async def evaluate(
        self,
        db: AsyncSession,
        user_id: int,
        stats: Mapping[str, Any],
        now: datetime | None = None,
    ) -> list[BadgeAward]:
        """Award every qualifying badge the user does not hold.

        Badges won by a concurrent evaluation are skipped, not reported.
        """
        awards = []
        for badge in await self.candidates(db, user_id, stats):
            award = await self.award(db, user_id, badge, now)
            if award is not None:
                awards.append(award)
        return awards
