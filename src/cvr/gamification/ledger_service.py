"""Experience counter and coin wallet.

Both operations only flush; the caller owns the transaction. Rewards flow one
way: experience may raise the level, a level-up grants coins, coins never
grant experience.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cvr.database import upsert_insert
from cvr.db.models import CoinTransaction, UserProgress, UserWallet
from cvr.exceptions import InsufficientFunds, InvalidArgument
from cvr.gamification.level_thresholds import (
    DEFAULT_LEVEL_TABLE,
    LevelInfo,
    LevelTable,
    level_up_coin_reward,
)
from cvr.gamification.schemas import LevelUp

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExperienceAwarded:
    user_id: int
    amount: int
    source: str
    total_experience: int
    level: LevelInfo
    level_up: LevelUp | None = None


async def get_or_create_progress(
    db: AsyncSession,
    user_id: int,
    *,
    lock: bool = False,
    table: LevelTable = DEFAULT_LEVEL_TABLE,
) -> UserProgress:
    """Get or create the experience row for a user, optionally locked FOR UPDATE."""
    stmt = select(UserProgress).where(UserProgress.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    progress = (await db.execute(stmt)).scalar_one_or_none()
    if progress is None:
        start = table.level_for(0)
        await db.execute(
            upsert_insert(db, UserProgress)
            .values(
                user_id=user_id,
                total_experience=0,
                level=start.level,
                level_name=start.name,
                updated_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        progress = (await db.execute(stmt)).scalar_one()
    return progress


async def get_or_create_wallet(db: AsyncSession, user_id: int, *, lock: bool = False) -> UserWallet:
    """Get or create the wallet row for a user, optionally locked FOR UPDATE."""
    stmt = select(UserWallet).where(UserWallet.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    wallet = (await db.execute(stmt)).scalar_one_or_none()
    if wallet is None:
        await db.execute(
            upsert_insert(db, UserWallet)
            .values(user_id=user_id, updated_at=datetime.now(timezone.utc))
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        wallet = (await db.execute(stmt)).scalar_one()
    return wallet


async def award_experience(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source: str,
    *,
    table: LevelTable = DEFAULT_LEVEL_TABLE,
    now: datetime | None = None,
) -> ExperienceAwarded:
    """Add experience to a user and recompute the level.

    On a level increase, the coin reward of every level reached is summed and
    applied through add_coins. Returns the award with its optional LevelUp.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        msg = f"Experience amount must be a non-negative integer, got {amount!r}"
        raise InvalidArgument(msg)
    if now is None:
        now = datetime.now(timezone.utc)

    progress = await get_or_create_progress(db, user_id, lock=True, table=table)
    old_level = progress.level

    progress.total_experience += amount
    info = table.level_for(progress.total_experience)
    progress.level = info.level
    progress.level_name = info.name
    progress.updated_at = now
    await db.flush()

    level_up = None
    if info.level > old_level:
        reached = table.levels_between(old_level, info.level)
        coins = sum(level_up_coin_reward(lvl.level) for lvl in reached)
        level_up = LevelUp(
            old_level=old_level,
            new_level=info.level,
            name=info.name,
            icon=info.icon,
            coins=coins,
        )
        if coins > 0:
            await add_coins(
                db,
                user_id,
                coins,
                reason=f"Reached level {info.level}: {info.name}",
                source="level_up",
                now=now,
            )
        logger.info("User %d leveled up %d -> %d", user_id, old_level, info.level)

    return ExperienceAwarded(
        user_id=user_id,
        amount=amount,
        source=source,
        total_experience=progress.total_experience,
        level=info,
        level_up=level_up,
    )


async def add_coins(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    source: str,
    *,
    now: datetime | None = None,
) -> CoinTransaction:
    """Append a coin transaction and update the wallet.

    Positive amounts are earnings, negative amounts are spends. A spend that
    would take the balance below zero raises InsufficientFunds.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount == 0:
        msg = f"Coin amount must be a non-zero integer, got {amount!r}"
        raise InvalidArgument(msg)
    if now is None:
        now = datetime.now(timezone.utc)

    wallet = await get_or_create_wallet(db, user_id, lock=True)

    if amount > 0:
        wallet.coins += amount
        wallet.total_earned += amount
        kind = "earned"
    else:
        if wallet.coins + amount < 0:
            raise InsufficientFunds(user_id, wallet.coins, -amount)
        wallet.coins += amount
        wallet.total_spent += -amount
        kind = "spent"
    wallet.updated_at = now

    txn = CoinTransaction(
        user_id=user_id,
        kind=kind,
        amount=abs(amount),
        reason=reason,
        source=source,
        created_at=now,
    )
    db.add(txn)
    await db.flush()
    return txn
