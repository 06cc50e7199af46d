"""ORM models for the reward engine.

Column types are portable: PostgreSQL (asyncpg) in production, SQLite
(aiosqlite) in tests. User profile data lives outside this schema; rows here
reference users by id only.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cvr.db.base import Base, BigIntPK, JSONType


# ---------------------------------------------------------------------------
# Experience and wallet
# ---------------------------------------------------------------------------


class UserProgress(Base):
    """Per-user experience counter and derived level. Single row per user."""

    __tablename__ = "user_progress"
    __table_args__ = (
        CheckConstraint("total_experience >= 0", name="ck_user_progress_experience_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    total_experience: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    level_name: Mapped[str] = mapped_column(String(64), nullable=False, default="Novice", server_default="Novice")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class UserWallet(Base):
    """Materialized balance over coin_transactions."""

    __tablename__ = "user_wallets"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_user_wallets_coins_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    coins: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    gems: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class CoinTransaction(Base):
    """Immutable coin ledger entry. Append-only."""

    __tablename__ = "coin_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_coin_transactions_amount_positive"),
        CheckConstraint("kind IN ('earned', 'spent')", name="ck_coin_transactions_kind"),
        Index("idx_coin_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String(256), nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Streaks and goals
# ---------------------------------------------------------------------------


class UserStreak(Base):
    """Consecutive-day activity per (user, streak type)."""

    __tablename__ = "user_streaks"
    __table_args__ = (
        UniqueConstraint("user_id", "streak_type", name="uq_user_streaks_user_type"),
        CheckConstraint("longest_streak >= current_streak", name="ck_user_streaks_longest"),
        CheckConstraint("freezes_used <= freezes_granted", name="ck_user_streaks_freezes"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    streak_type: Mapped[str] = mapped_column(String(32), nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    streak_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    freezes_available: Mapped[int] = mapped_column(Integer, nullable=False, default=2, server_default="2")
    freezes_granted: Mapped[int] = mapped_column(Integer, nullable=False, default=2, server_default="2")
    freezes_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class UserGoal(Base):
    """Per-period progress accumulator with a one-shot completion reward."""

    __tablename__ = "user_goals"
    __table_args__ = (
        UniqueConstraint("user_id", "period", "category", "period_date", name="uq_user_goals_user_period_category"),
        CheckConstraint("current_progress >= 0", name="ck_user_goals_progress_non_negative"),
        CheckConstraint("current_progress <= target_value", name="ck_user_goals_progress_clamped"),
        Index("idx_user_goals_open", "user_id", "period", "period_date", "is_completed"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    period: Mapped[str] = mapped_column(String(8), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    period_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reward_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reward_experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Badge catalog entry. Read-only to the engine once seeded."""

    __tablename__ = "badge_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    coins_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badge_definitions.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    badge: Mapped[BadgeDefinition] = relationship("BadgeDefinition", lazy="joined")


# ---------------------------------------------------------------------------
# Completions and notifications
# ---------------------------------------------------------------------------


class ActivityCompletion(Base):
    """Audit row for every completion processed by the critical section."""

    __tablename__ = "activity_completions"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_activity_completions_user_key"),
        Index("idx_activity_completions_user_completed", "user_id", "completed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    activity_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    experience_awarded: Mapped[int] = mapped_column(Integer, nullable=False)
    coins_awarded: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Notification(Base):
    """Persisted user notifications. Written by the engine, read elsewhere."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    notification_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
