"""Reward formula for completions."""

from __future__ import annotations

import pytest

from cvr.gamification.rewards import compute_rewards


class TestComputeRewards:
    """Test compute_rewards."""

    def test_reference_scenario(self):
        """Score 85 over 20 minutes gives 208 XP and 31 coins."""
        rewards = compute_rewards(score=85, time_spent=20)
        assert rewards.base_experience == 102 + 6
        assert rewards.time_bonus == 50
        assert rewards.score_bonus == 50
        assert rewards.experience == 208
        assert rewards.coins == 31

    def test_zero_input(self):
        rewards = compute_rewards(score=0, time_spent=0)
        assert rewards.experience == 0
        assert rewards.coins == 0

    @pytest.mark.parametrize(
        ("time_spent", "bonus"),
        [(5, 0), (6, 25), (10, 25), (11, 50)],
    )
    def test_time_bonus_thresholds(self, time_spent, bonus):
        assert compute_rewards(score=0, time_spent=time_spent).time_bonus == bonus

    @pytest.mark.parametrize(
        ("score", "bonus"),
        [(69, 0), (70, 25), (79, 25), (80, 50), (89, 50), (90, 100), (100, 100)],
    )
    def test_score_bonus_thresholds(self, score, bonus):
        assert compute_rewards(score=score, time_spent=0).score_bonus == bonus

    def test_base_is_floored(self):
        # 1 * 1.2 = 1.2 -> 1, 3 * 0.3 = 0.9 -> 0
        rewards = compute_rewards(score=1, time_spent=3)
        assert rewards.base_experience == 1

    def test_perfect_score_long_session(self):
        rewards = compute_rewards(score=100, time_spent=60)
        assert rewards.experience == 120 + 18 + 50 + 100
        assert rewards.coins == 288 * 15 // 100
