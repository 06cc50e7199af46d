"""Experience counter, level-ups and the coin wallet."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from cvr.db.models import CoinTransaction, UserProgress, UserWallet
from cvr.exceptions import InsufficientFunds, InvalidArgument
from cvr.gamification.ledger_service import (
    add_coins,
    award_experience,
    get_or_create_progress,
    get_or_create_wallet,
)


class TestGetOrCreate:
    """Rows are created lazily on first use."""

    @pytest.mark.asyncio
    async def test_creates_progress(self, db_session):
        progress = await get_or_create_progress(db_session, 1)
        assert progress.total_experience == 0
        assert progress.level == 1
        assert progress.level_name == "Novice"

    @pytest.mark.asyncio
    async def test_returns_existing(self, db_session):
        first = await get_or_create_progress(db_session, 1)
        first.total_experience = 50
        await db_session.flush()
        second = await get_or_create_progress(db_session, 1, lock=True)
        assert second.total_experience == 50

    @pytest.mark.asyncio
    async def test_creates_wallet(self, db_session):
        wallet = await get_or_create_wallet(db_session, 1)
        assert wallet.coins == 0
        assert wallet.total_earned == 0
        assert wallet.total_spent == 0


class TestAwardExperience:
    """Test award_experience."""

    @pytest.mark.asyncio
    async def test_increments_total(self, db_session):
        awarded = await award_experience(db_session, 1, 40, "lesson")
        assert awarded.total_experience == 40
        assert awarded.level.level == 1
        assert awarded.level_up is None

    @pytest.mark.asyncio
    async def test_additivity(self, db_session):
        await award_experience(db_session, 1, 130, "lesson")
        await award_experience(db_session, 1, 270, "goal")
        await award_experience(db_session, 2, 400, "lesson")
        await db_session.commit()

        one = await db_session.get(UserProgress, 1)
        two = await db_session.get(UserProgress, 2)
        assert one.total_experience == two.total_experience == 400
        assert one.level == two.level == 3

    @pytest.mark.asyncio
    async def test_level_up_grants_coins_only(self, db_session):
        awarded = await award_experience(db_session, 1, 100, "lesson")
        assert awarded.level_up is not None
        assert awarded.level_up.old_level == 1
        assert awarded.level_up.new_level == 2
        assert awarded.level_up.name == "Apprentice"
        assert awarded.level_up.coins == 100
        # Level-up coins never feed back into experience
        assert awarded.total_experience == 100

        wallet = await get_or_create_wallet(db_session, 1)
        assert wallet.coins == 100
        txns = (await db_session.execute(select(CoinTransaction))).scalars().all()
        assert [(t.kind, t.amount, t.source) for t in txns] == [("earned", 100, "level_up")]

    @pytest.mark.asyncio
    async def test_multi_level_jump_sums_rewards(self, db_session):
        awarded = await award_experience(db_session, 1, 650, "lesson")
        assert awarded.level_up.old_level == 1
        assert awarded.level_up.new_level == 4
        assert awarded.level_up.coins == (2 + 3 + 4) * 50

    @pytest.mark.asyncio
    async def test_zero_amount_allowed(self, db_session):
        awarded = await award_experience(db_session, 1, 0, "lesson")
        assert awarded.total_experience == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [-1, 1.5, True])
    async def test_invalid_amount(self, db_session, amount):
        with pytest.raises(InvalidArgument):
            await award_experience(db_session, 1, amount, "lesson")


class TestAddCoins:
    """Test add_coins."""

    @pytest.mark.asyncio
    async def test_earn(self, db_session):
        txn = await add_coins(db_session, 1, 25, "Completed lesson", "lesson")
        assert txn.kind == "earned"
        assert txn.amount == 25
        wallet = await get_or_create_wallet(db_session, 1)
        assert wallet.coins == 25
        assert wallet.total_earned == 25

    @pytest.mark.asyncio
    async def test_spend(self, db_session):
        await add_coins(db_session, 1, 50, "Completed lesson", "lesson")
        txn = await add_coins(db_session, 1, -20, "Bought hint", "shop")
        assert txn.kind == "spent"
        assert txn.amount == 20
        wallet = await get_or_create_wallet(db_session, 1)
        assert wallet.coins == 30
        assert wallet.total_earned - wallet.total_spent == wallet.coins

    @pytest.mark.asyncio
    async def test_spend_beyond_balance_rejected(self, db_session):
        await add_coins(db_session, 1, 10, "Completed lesson", "lesson")
        with pytest.raises(InsufficientFunds) as exc_info:
            await add_coins(db_session, 1, -11, "Bought hint", "shop")
        assert exc_info.value.balance == 10
        assert exc_info.value.requested == 11

        wallet = await db_session.get(UserWallet, 1)
        assert wallet.coins == 10
        count = (await db_session.execute(select(func.count()).select_from(CoinTransaction))).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_zero_rejected(self, db_session):
        with pytest.raises(InvalidArgument):
            await add_coins(db_session, 1, 0, "Nothing", "lesson")

    @pytest.mark.asyncio
    async def test_one_transaction_per_call(self, db_session):
        for amount in (5, 7, -3):
            await add_coins(db_session, 1, amount, "x", "test")
        await db_session.commit()
        txns = (await db_session.execute(select(CoinTransaction).order_by(CoinTransaction.id))).scalars().all()
        assert [(t.kind, t.amount) for t in txns] == [("earned", 5), ("earned", 7), ("spent", 3)]
