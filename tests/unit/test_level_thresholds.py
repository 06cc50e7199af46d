"""Level computation: breakpoints, progress and monotonicity."""

from __future__ import annotations

import pytest

from cvr.exceptions import InvalidArgument
from cvr.gamification.level_thresholds import (
    DEFAULT_LEVEL_TABLE,
    Level,
    LevelTable,
    level_for,
    level_up_coin_reward,
)


class TestLevelFor:
    """Test level_for against the default table."""

    def test_zero_experience_is_level_one(self):
        info = level_for(0)
        assert info.level == 1
        assert info.name == "Novice"
        assert info.progress_to_next == 0
        assert info.experience_required_for_next == 100
        assert info.next_level == 2

    def test_exact_breakpoint(self):
        assert level_for(100).level == 2
        assert level_for(99).level == 1
        assert level_for(300).name == "Student"

    def test_progress_percentage(self):
        # Scholar at 1000, Expert at 1500
        info = level_for(1250)
        assert info.level == 5
        assert info.progress_to_next == 50
        assert info.experience_required_for_next == 250

    def test_capped_at_max_level(self):
        info = level_for(5500)
        assert info.level == 10
        assert info.name == "Legend"
        assert info.progress_to_next == 100
        assert info.experience_required_for_next == 0
        assert info.next_level is None
        assert level_for(10_000_000).level == 10

    def test_negative_rejected(self):
        with pytest.raises(InvalidArgument):
            level_for(-1)

    def test_invalid_argument_is_value_error(self):
        with pytest.raises(ValueError):
            level_for(-5)

    def test_monotonic(self):
        previous = 0
        for xp in range(0, 7000, 7):
            level = level_for(xp).level
            assert level >= previous
            previous = level


class TestLevelTable:
    """Test LevelTable construction rules."""

    def test_must_start_at_zero(self):
        with pytest.raises(ValueError, match="start at 0"):
            LevelTable([Level(1, "A", "", 10)])

    def test_must_be_strictly_increasing(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            LevelTable([Level(1, "A", "", 0), Level(2, "B", "", 100), Level(3, "C", "", 100)])

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            LevelTable([])

    def test_custom_table(self):
        table = LevelTable([Level(1, "Egg", "", 0), Level(2, "Chick", "", 10)])
        assert table.level_for(9).level == 1
        assert table.level_for(10).name == "Chick"
        assert len(table) == 2
        assert table.max_level.name == "Chick"

    def test_levels_between(self):
        reached = DEFAULT_LEVEL_TABLE.levels_between(1, 4)
        assert [lvl.level for lvl in reached] == [2, 3, 4]
        assert DEFAULT_LEVEL_TABLE.levels_between(3, 3) == []


class TestLevelUpCoins:
    """Level-up coin reward is 50 per level reached."""

    def test_reward(self):
        assert level_up_coin_reward(2) == 100
        assert level_up_coin_reward(10) == 500
