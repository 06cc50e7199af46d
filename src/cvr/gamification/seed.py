"""Badge catalog: seed data and the repository the badge engine reads from."""

from __future__ import annotations

import logging
from collections.abc import Collection

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvr.database import upsert_insert
from cvr.db.models import BadgeDefinition

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Study
    {
        "slug": "first_steps",
        "name": "First Steps",
        "description": "Complete your first lesson",
        "category": "study",
        "icon": "\U0001f3af",
        "rarity": "common",
        "conditions": {"lessons_completed": 1},
        "xp_reward": 50,
        "coins_reward": 10,
        "sort_order": 1,
    },
    {
        "slug": "knowledge_seeker",
        "name": "Knowledge Seeker",
        "description": "Complete 10 lessons",
        "category": "study",
        "icon": "\U0001f4da",
        "rarity": "common",
        "conditions": {"lessons_completed": 10},
        "xp_reward": 200,
        "coins_reward": 50,
        "sort_order": 2,
    },
    {
        "slug": "learning_master",
        "name": "Learning Master",
        "description": "Complete 50 lessons",
        "category": "study",
        "icon": "\U0001f393",
        "rarity": "rare",
        "conditions": {"lessons_completed": 50},
        "xp_reward": 500,
        "coins_reward": 150,
        "sort_order": 3,
    },
    {
        "slug": "scholar",
        "name": "Scholar",
        "description": "Complete 100 lessons",
        "category": "study",
        "icon": "\U0001f468‍\U0001f393",
        "rarity": "epic",
        "conditions": {"lessons_completed": 100},
        "xp_reward": 1000,
        "coins_reward": 300,
        "sort_order": 4,
    },
    # Streaks
    {
        "slug": "consistent_learner",
        "name": "Consistent Learner",
        "description": "Maintain a 7-day learning streak",
        "category": "streak",
        "icon": "\U0001f525",
        "rarity": "common",
        "conditions": {"daily_streak": 7},
        "xp_reward": 300,
        "coins_reward": 75,
        "sort_order": 5,
    },
    {
        "slug": "dedication",
        "name": "Dedication",
        "description": "Maintain a 30-day learning streak",
        "category": "streak",
        "icon": "\U0001f48e",
        "rarity": "rare",
        "conditions": {"daily_streak": 30},
        "xp_reward": 1000,
        "coins_reward": 250,
        "sort_order": 6,
    },
    {
        "slug": "unstoppable",
        "name": "Unstoppable",
        "description": "Maintain a 100-day learning streak",
        "category": "streak",
        "icon": "⚡",
        "rarity": "legendary",
        "conditions": {"daily_streak": 100},
        "xp_reward": 2500,
        "coins_reward": 500,
        "sort_order": 7,
    },
    # Achievements
    {
        "slug": "speed_demon",
        "name": "Speed Demon",
        "description": "Complete 5 lessons in one day",
        "category": "achievement",
        "icon": "\U0001f680",
        "rarity": "rare",
        "conditions": {"lessons_in_day": 5},
        "xp_reward": 400,
        "coins_reward": 100,
        "sort_order": 8,
    },
    {
        "slug": "night_owl",
        "name": "Night Owl",
        "description": "Complete 10 lessons after 10 PM",
        "category": "achievement",
        "icon": "\U0001f989",
        "rarity": "common",
        "conditions": {"late_night_lessons": 10},
        "xp_reward": 250,
        "coins_reward": 60,
        "sort_order": 9,
    },
    {
        "slug": "early_bird",
        "name": "Early Bird",
        "description": "Complete 10 lessons before 7 AM",
        "category": "achievement",
        "icon": "\U0001f305",
        "rarity": "common",
        "conditions": {"early_morning_lessons": 10},
        "xp_reward": 250,
        "coins_reward": 60,
        "sort_order": 10,
    },
    # Social
    {
        "slug": "codys_friend",
        "name": "Cody's Friend",
        "description": "Have 50 interactions with Cody",
        "category": "social",
        "icon": "\U0001f916",
        "rarity": "common",
        "conditions": {"companion_interactions": 50},
        "xp_reward": 300,
        "coins_reward": 80,
        "sort_order": 11,
    },
    {
        "slug": "conversation_expert",
        "name": "Conversation Expert",
        "description": "Have 200 interactions with Cody",
        "category": "social",
        "icon": "\U0001f4ac",
        "rarity": "rare",
        "conditions": {"companion_interactions": 200},
        "xp_reward": 750,
        "coins_reward": 200,
        "sort_order": 12,
    },
    # Special
    {
        "slug": "weekend_warrior",
        "name": "Weekend Warrior",
        "description": "Complete lessons on 10 weekend days",
        "category": "special",
        "icon": "⚔️",
        "rarity": "epic",
        "conditions": {"weekend_sessions": 10},
        "xp_reward": 800,
        "coins_reward": 180,
        "sort_order": 13,
    },
    {
        "slug": "perfect_week",
        "name": "Perfect Week",
        "description": "Complete all daily goals every day for a week",
        "category": "special",
        "icon": "✨",
        "rarity": "epic",
        "conditions": {"perfect_weeks": 1},
        "xp_reward": 1200,
        "coins_reward": 300,
        "sort_order": 14,
    },
]


async def seed_badges(db: AsyncSession, badges: list[dict] | None = None) -> int:
    """Upsert badge definitions by slug. Returns number of badges seeded."""
    seeded = 0
    for badge_data in badges if badges is not None else BADGE_SEED_DATA:
        stmt = upsert_insert(db, BadgeDefinition).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "icon": stmt.excluded.icon,
                "rarity": stmt.excluded.rarity,
                "conditions": stmt.excluded.conditions,
                "xp_reward": stmt.excluded.xp_reward,
                "coins_reward": stmt.excluded.coins_reward,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.flush()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded


class BadgeCatalog:
    """Read access to badge definitions.

    Passed into the badge engine instead of a module-level lookup map, so
    each engine decides which catalog it reads. ``slugs`` restricts the
    catalog to a subset of badges.
    """

    def __init__(self, slugs: Collection[str] | None = None) -> None:
        self.slugs = frozenset(slugs) if slugs is not None else None

    async def active_badges(self, db: AsyncSession) -> list[BadgeDefinition]:
        stmt = (
            select(BadgeDefinition)
            .where(BadgeDefinition.is_active.is_(True))
            .order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
        )
        if self.slugs is not None:
            stmt = stmt.where(BadgeDefinition.slug.in_(self.slugs))
        return list((await db.execute(stmt)).scalars().all())

    async def get_by_slug(self, db: AsyncSession, slug: str) -> BadgeDefinition | None:
        if self.slugs is not None and slug not in self.slugs:
            return None
        result = await db.execute(select(BadgeDefinition).where(BadgeDefinition.slug == slug))
        return result.scalar_one_or_none()
