"""Single entry point for activity completions.

``process_completion`` runs in two phases:

1. Critical section. Under the per-user lock and inside one database
   transaction: experience (plus level-up coins), completion coins, streak,
   goals and goal rewards, and the audit row. Any failure rolls everything
   back and surfaces to the caller.
2. Follow-up. After commit: the completion notifications, then badge
   evaluation (each award and its rewards in one short transaction, followed
   by its notifications). Failures are logged and never undo phase 1.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cvr.config import Settings, get_settings
from cvr.database import dialect_name, get_session_factory, session_scope
from cvr.db.models import ActivityCompletion
from cvr.exceptions import (
    BestEffortFailure,
    LockTimeout,
    PersistenceError,
    RewardEngineError,
    ValidationError,
)
from cvr.gamification.badge_service import BadgeEngine
from cvr.gamification.goal_service import GOAL_TEMPLATES, PERIODS, GoalTemplate, apply_progress, ensure_goals
from cvr.gamification.ledger_service import add_coins, award_experience
from cvr.gamification.level_thresholds import DEFAULT_LEVEL_TABLE, LevelTable
from cvr.gamification.locks import UserLockRegistry
from cvr.gamification.rewards import RewardQuantities, compute_rewards
from cvr.gamification.schemas import (
    BadgeAward,
    CompletionResult,
    GoalCompletion,
    LevelUp,
    NotificationEvent,
    StreakUpdate,
)
from cvr.gamification.stats import ActivityStatsProvider, StatsProvider
from cvr.gamification.streak_service import get_streak, record_activity
from cvr.notifications.emitter import NotificationEmitter
from cvr.redis_client import get_redis_or_none

logger = structlog.get_logger()

LOCK_NOT_AVAILABLE = "55P03"
MAX_SCORE = 100


@dataclass
class _Outcome:
    experience: int = 0
    coins: int = 0
    level_ups: list[LevelUp] = field(default_factory=list)
    streak: StreakUpdate | None = None
    goals: list[GoalCompletion] = field(default_factory=list)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_completion(user_id: Any, activity_ref: Any, time_spent: Any, score: Any) -> None:
    """Reject malformed completion input before any state is touched."""
    if not _is_int(user_id) or user_id <= 0:
        msg = f"user_id must be a positive integer, got {user_id!r}"
        raise ValidationError(msg)
    if not isinstance(activity_ref, str) or not activity_ref.strip():
        msg = "activity_ref must be a non-empty string"
        raise ValidationError(msg)
    if not _is_int(time_spent) or time_spent < 0:
        msg = f"time_spent must be a non-negative integer (minutes), got {time_spent!r}"
        raise ValidationError(msg)
    if not _is_int(score) or not 0 <= score <= MAX_SCORE:
        msg = f"score must be an integer in [0, {MAX_SCORE}], got {score!r}"
        raise ValidationError(msg)


def merge_level_ups(level_ups: list[LevelUp]) -> LevelUp | None:
    """Collapse consecutive level-ups into one event spanning all of them."""
    if not level_ups:
        return None
    first, last = level_ups[0], level_ups[-1]
    return LevelUp(
        old_level=first.old_level,
        new_level=last.new_level,
        name=last.name,
        icon=last.icon,
        coins=sum(lu.coins for lu in level_ups),
    )


def _is_lock_not_available(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


class CompletionOrchestrator:
    """Sequences the ledger, streak, goal and badge components for one completion."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        settings: Settings | None = None,
        locks: UserLockRegistry | None = None,
        level_table: LevelTable = DEFAULT_LEVEL_TABLE,
        badge_engine: BadgeEngine | None = None,
        stats_provider: StatsProvider | None = None,
        emitter: NotificationEmitter | None = None,
        goal_templates: Mapping[str, tuple[GoalTemplate, ...]] = GOAL_TEMPLATES,
        arq_pool: Any = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self._session_factory = session_factory
        if locks is None:
            locks = UserLockRegistry(timeout=self.settings.lock_timeout_seconds)
        self.locks = locks
        self.level_table = level_table
        self.badge_engine = badge_engine if badge_engine is not None else BadgeEngine()
        if stats_provider is None:
            stats_provider = ActivityStatsProvider(streak_type=self.settings.default_streak_type)
        self.stats_provider = stats_provider
        self._emitter = emitter
        self.goal_templates = goal_templates
        self.arq_pool = arq_pool

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @property
    def emitter(self) -> NotificationEmitter:
        if self._emitter is None:
            return NotificationEmitter(get_redis_or_none(), enabled=self.settings.notifications_enabled)
        return self._emitter

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_completion(
        self,
        user_id: int,
        activity_ref: str,
        time_spent: int,
        score: int,
        *,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> CompletionResult:
        validate_completion(user_id, activity_ref, time_spent, score)
        if now is None:
            now = datetime.now(timezone.utc)
        rewards = compute_rewards(score, time_spent)
        log = logger.bind(user_id=user_id, activity_ref=activity_ref)

        async with self.locks.hold(user_id):
            replay = await self._run_critical_section(
                user_id, activity_ref, time_spent, score, rewards, idempotency_key, now
            )
        if isinstance(replay, CompletionResult):
            log.info("completion_replayed", idempotency_key=idempotency_key)
            return replay
        outcome = replay

        log.info(
            "completion_applied",
            experience=outcome.experience,
            coins=outcome.coins,
            streak=outcome.streak.current_streak if outcome.streak else None,
            goals_completed=len(outcome.goals),
        )

        await self._follow_up_notifications(user_id, activity_ref, outcome)
        new_badges = await self._follow_up_badges(user_id, now)

        level_up = merge_level_ups(outcome.level_ups)
        return CompletionResult(
            experience_awarded=outcome.experience,
            coins_awarded=outcome.coins,
            new_level=level_up.new_level if level_up else None,
            level_up=level_up,
            streak_updated=outcome.streak.changed if outcome.streak else False,
            current_streak=outcome.streak.current_streak if outcome.streak else 0,
            goals_completed=outcome.goals,
            new_badges=new_badges,
        )

    # ------------------------------------------------------------------
    # Critical section
    # ------------------------------------------------------------------

    async def _run_critical_section(
        self,
        user_id: int,
        activity_ref: str,
        time_spent: int,
        score: int,
        rewards: RewardQuantities,
        idempotency_key: str | None,
        now: datetime,
    ) -> _Outcome | CompletionResult:
        try:
            async with session_scope(self.session_factory) as db:
                if idempotency_key is not None:
                    previous = await self._find_completion(db, user_id, idempotency_key)
                    if previous is not None:
                        return await self._replay(db, previous)
                await self._set_lock_timeout(db)
                return await self._apply_completion(
                    db, user_id, activity_ref, time_spent, score, rewards, idempotency_key, now
                )
        except RewardEngineError:
            raise
        except IntegrityError as exc:
            # Another process stored the same idempotency key first
            if idempotency_key is not None:
                async with session_scope(self.session_factory) as db:
                    previous = await self._find_completion(db, user_id, idempotency_key)
                    if previous is not None:
                        return await self._replay(db, previous)
            msg = f"Completion for user {user_id} could not be stored"
            raise PersistenceError(msg) from exc
        except DBAPIError as exc:
            if _is_lock_not_available(exc):
                raise LockTimeout(user_id, self.locks.timeout) from exc
            msg = f"Completion for user {user_id} could not be stored"
            raise PersistenceError(msg) from exc
        except SQLAlchemyError as exc:
            msg = f"Completion for user {user_id} could not be stored"
            raise PersistenceError(msg) from exc

    async def _set_lock_timeout(self, db: AsyncSession) -> None:
        """Bound row-lock waits on PostgreSQL. SQLite serializes writers itself."""
        if dialect_name(db) != "postgresql":
            return
        timeout_ms = int(self.locks.timeout * 1000)
        await db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    async def _find_completion(
        self, db: AsyncSession, user_id: int, idempotency_key: str
    ) -> ActivityCompletion | None:
        result = await db.execute(
            select(ActivityCompletion).where(
                ActivityCompletion.user_id == user_id,
                ActivityCompletion.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    async def _replay(self, db: AsyncSession, previous: ActivityCompletion) -> CompletionResult:
        streak = await get_streak(db, previous.user_id, self.settings.default_streak_type)
        return CompletionResult(
            experience_awarded=previous.experience_awarded,
            coins_awarded=previous.coins_awarded,
            current_streak=streak.current_streak if streak else 0,
            already_processed=True,
        )

    async def _apply_completion(
        self,
        db: AsyncSession,
        user_id: int,
        activity_ref: str,
        time_spent: int,
        score: int,
        rewards: RewardQuantities,
        idempotency_key: str | None,
        now: datetime,
    ) -> _Outcome:
        outcome = _Outcome()

        await self._grant_experience(db, outcome, user_id, rewards.experience, "lesson", now)
        if rewards.coins > 0:
            await add_coins(
                db, user_id, rewards.coins,
                reason=f"Completed {activity_ref}",
                source="lesson",
                now=now,
            )
            outcome.coins += rewards.coins

        outcome.streak = await record_activity(
            db,
            user_id,
            self.settings.default_streak_type,
            now,
            initial_freezes=self.settings.initial_streak_freezes,
        )

        deltas = {"lessons": 1, "time_minutes": time_spent, "xp": rewards.experience}
        for period in PERIODS:
            await ensure_goals(db, user_id, period, now, self.goal_templates)
            outcome.goals.extend(await apply_progress(db, user_id, period, deltas, now))

        for goal in outcome.goals:
            if goal.reward_experience > 0:
                await self._grant_experience(db, outcome, user_id, goal.reward_experience, "goal", now)
            if goal.reward_coins > 0:
                await add_coins(
                    db, user_id, goal.reward_coins,
                    reason=f"Completed {goal.period} {goal.category} goal",
                    source="goal",
                    now=now,
                )
                outcome.coins += goal.reward_coins

        db.add(ActivityCompletion(
            user_id=user_id,
            activity_ref=activity_ref,
            time_spent=time_spent,
            score=score,
            experience_awarded=outcome.experience,
            coins_awarded=outcome.coins,
            idempotency_key=idempotency_key,
            completed_at=now,
        ))
        await db.flush()
        return outcome

    async def _grant_experience(
        self,
        db: AsyncSession,
        outcome: _Outcome,
        user_id: int,
        amount: int,
        source: str,
        now: datetime,
    ) -> None:
        awarded = await award_experience(db, user_id, amount, source, table=self.level_table, now=now)
        outcome.experience += amount
        if awarded.level_up is not None:
            outcome.level_ups.append(awarded.level_up)
            outcome.coins += awarded.level_up.coins

    # ------------------------------------------------------------------
    # Best-effort follow-up
    # ------------------------------------------------------------------

    async def award_badges(self, user_id: int, now: datetime | None = None) -> list[BadgeAward]:
        """Evaluate badges for a user and apply the rewards of each new award.

        Each award runs in its own short transaction together with its
        experience and coin rewards. Raises on failure; callers decide
        whether that is fatal.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        async with session_scope(self.session_factory) as db:
            stats = await self.stats_provider.snapshot(db, user_id)
            candidates = await self.badge_engine.candidates(db, user_id, stats)

        awards: list[BadgeAward] = []
        for badge in candidates:
            outcome = _Outcome()
            async with self.locks.hold(user_id):
                async with session_scope(self.session_factory) as db:
                    award = await self.badge_engine.award(db, user_id, badge, now)
                    if award is None:
                        continue
                    if award.xp_reward > 0:
                        await self._grant_experience(db, outcome, user_id, award.xp_reward, "badge", now)
                    if award.coins_reward > 0:
                        await add_coins(
                            db, user_id, award.coins_reward,
                            reason=f'Earned badge "{award.name}"',
                            source="badge",
                            now=now,
                        )
            awards.append(award)
            await self._notify(user_id, self._badge_events(user_id, award, outcome.level_ups))
        return awards

    async def _follow_up_badges(self, user_id: int, now: datetime) -> list[BadgeAward]:
        try:
            return await self.award_badges(user_id, now)
        except Exception as exc:
            failure = BestEffortFailure(f"Badge evaluation failed for user {user_id}")
            failure.__cause__ = exc
            logger.warning("best_effort_failure", user_id=user_id, stage="badges", error=str(failure), exc_info=exc)
            await self._enqueue_badge_retry(user_id)
            return []

    async def _follow_up_notifications(self, user_id: int, activity_ref: str, outcome: _Outcome) -> None:
        await self._notify(user_id, self._completion_events(user_id, activity_ref, outcome))

    async def _notify(self, user_id: int, events: list[NotificationEvent]) -> None:
        if not events:
            return
        try:
            async with session_scope(self.session_factory) as db:
                emitter = self.emitter
                for event in events:
                    await emitter.emit(db, event)
        except Exception as exc:
            failure = BestEffortFailure(f"Notification delivery failed for user {user_id}")
            failure.__cause__ = exc
            logger.warning(
                "best_effort_failure", user_id=user_id, stage="notifications", error=str(failure), exc_info=exc
            )

    async def _enqueue_badge_retry(self, user_id: int) -> None:
        if not self.settings.badge_retry_enabled or self.arq_pool is None:
            return
        try:
            await self.arq_pool.enqueue_job("reevaluate_badges", user_id)
        except Exception:
            logger.warning("badge_retry_enqueue_failed", user_id=user_id, exc_info=True)

    # ------------------------------------------------------------------
    # Notification payloads
    # ------------------------------------------------------------------

    def _completion_events(self, user_id: int, activity_ref: str, outcome: _Outcome) -> list[NotificationEvent]:
        events = [
            NotificationEvent(
                user_id=user_id,
                type="lesson_complete",
                title="Lesson Complete!",
                message=f"+{outcome.experience} XP, +{outcome.coins} coins",
                icon="✅",
                metadata={
                    "activity_ref": activity_ref,
                    "experience": outcome.experience,
                    "coins": outcome.coins,
                },
            )
        ]
        events.extend(self._level_up_events(user_id, outcome.level_ups))

        streak = outcome.streak
        if streak is not None and streak.milestone:
            events.append(NotificationEvent(
                user_id=user_id,
                type="streak_milestone",
                title=f"{streak.milestone}-Day Streak!",
                message=f"You have learned {streak.milestone} days in a row. Keep it going!",
                icon="\U0001f525",
                metadata={"streak_type": streak.streak_type, "current_streak": streak.current_streak},
            ))

        for goal in outcome.goals:
            events.append(NotificationEvent(
                user_id=user_id,
                type="goal_completed",
                title="Goal Complete!",
                message=(
                    f"{goal.period.capitalize()} {goal.category.replace('_', ' ')} goal reached: "
                    f"+{goal.reward_experience} XP, +{goal.reward_coins} coins"
                ),
                icon="\U0001f3af",
                metadata=goal.model_dump(mode="json"),
            ))
        return events

    def _level_up_events(self, user_id: int, level_ups: list[LevelUp]) -> list[NotificationEvent]:
        merged = merge_level_ups(level_ups)
        if merged is None:
            return []
        return [NotificationEvent(
            user_id=user_id,
            type="level_up",
            title="Level Up!",
            message=f"Level {merged.new_level}: {merged.name} (+{merged.coins} coins)",
            icon=merged.icon,
            metadata=merged.model_dump(mode="json"),
        )]

    def _badge_events(self, user_id: int, award: BadgeAward, level_ups: list[LevelUp]) -> list[NotificationEvent]:
        events = [NotificationEvent(
            user_id=user_id,
            type="badge_earned",
            title=f'Badge Earned: "{award.name}"',
            message=f"+{award.xp_reward} XP, +{award.coins_reward} coins",
            icon=award.icon or None,
            metadata={"badge_slug": award.slug, "rarity": award.rarity},
        )]
        events.extend(self._level_up_events(user_id, level_ups))
        return events
