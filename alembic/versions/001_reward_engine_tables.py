"""Reward engine tables.

Creates user_progress, user_wallets, coin_transactions, user_streaks,
user_goals, badge_definitions, user_badges, activity_completions and
notifications.

Revision ID: 001_reward_engine_tables
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_reward_engine_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Experience ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            user_id BIGINT PRIMARY KEY,
            total_experience BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            level_name VARCHAR(64) NOT NULL DEFAULT 'Novice',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_progress_experience_non_negative CHECK (total_experience >= 0)
        )
    """)

    # --- Wallet + coin ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_wallets (
            user_id BIGINT PRIMARY KEY,
            coins BIGINT NOT NULL DEFAULT 0,
            gems BIGINT NOT NULL DEFAULT 0,
            total_earned BIGINT NOT NULL DEFAULT 0,
            total_spent BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_user_wallets_coins_non_negative CHECK (coins >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            kind VARCHAR(8) NOT NULL,
            amount BIGINT NOT NULL,
            reason VARCHAR(256) NOT NULL,
            source VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT ck_coin_transactions_amount_positive CHECK (amount > 0),
            CONSTRAINT ck_coin_transactions_kind CHECK (kind IN ('earned', 'spent'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coin_transactions_user_created
        ON coin_transactions(user_id, created_at)
    """)

    # --- Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_streaks (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            streak_type VARCHAR(32) NOT NULL,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            streak_start_date DATE,
            freezes_available INTEGER NOT NULL DEFAULT 2,
            freezes_granted INTEGER NOT NULL DEFAULT 2,
            freezes_used INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_streaks_user_type UNIQUE (user_id, streak_type),
            CONSTRAINT ck_user_streaks_longest CHECK (longest_streak >= current_streak),
            CONSTRAINT ck_user_streaks_freezes CHECK (freezes_used <= freezes_granted)
        )
    """)

    # --- Goals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_goals (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            period VARCHAR(8) NOT NULL,
            category VARCHAR(32) NOT NULL,
            target_value INTEGER NOT NULL,
            current_progress INTEGER NOT NULL DEFAULT 0,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            period_date DATE NOT NULL,
            completed_at TIMESTAMPTZ,
            reward_coins INTEGER NOT NULL DEFAULT 0,
            reward_experience INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_goals_user_period_category UNIQUE (user_id, period, category, period_date),
            CONSTRAINT ck_user_goals_progress_non_negative CHECK (current_progress >= 0),
            CONSTRAINT ck_user_goals_progress_clamped CHECK (current_progress <= target_value)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_goals_open
        ON user_goals(user_id, period, period_date, is_completed)
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            icon VARCHAR(16) NOT NULL DEFAULT '',
            rarity VARCHAR(16) NOT NULL,
            conditions JSONB NOT NULL DEFAULT '{}',
            xp_reward INTEGER NOT NULL DEFAULT 0,
            coins_reward INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_badges_user_badge UNIQUE (user_id, badge_id)
        )
    """)

    # --- Completion audit ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_completions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            activity_ref VARCHAR(128) NOT NULL,
            time_spent INTEGER NOT NULL,
            score INTEGER NOT NULL,
            experience_awarded INTEGER NOT NULL,
            coins_awarded INTEGER NOT NULL,
            idempotency_key VARCHAR(128),
            completed_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_activity_completions_user_key UNIQUE (user_id, idempotency_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_activity_completions_user_completed
        ON activity_completions(user_id, completed_at)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT NOT NULL,
            icon VARCHAR(16),
            is_read BOOLEAN NOT NULL DEFAULT false,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_created
        ON notifications(user_id, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS activity_completions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_goals CASCADE")
    op.execute("DROP TABLE IF EXISTS user_streaks CASCADE")
    op.execute("DROP TABLE IF EXISTS coin_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_wallets CASCADE")
    op.execute("DROP TABLE IF EXISTS user_progress CASCADE")
