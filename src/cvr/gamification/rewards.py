"""Reward formula for a single activity completion.

Time is measured in minutes.
"""

from __future__ import annotations

from dataclasses import dataclass

# Multipliers as (numerator, denominator) so flooring stays exact in integers.
SCORE_MULTIPLIER = (12, 10)
TIME_MULTIPLIER = (3, 10)
COIN_RATE = (15, 100)

# (minimum minutes, exclusive) -> bonus, highest first
TIME_BONUSES: tuple[tuple[int, int], ...] = ((10, 50), (5, 25))
# (minimum score, inclusive) -> bonus, highest first
SCORE_BONUSES: tuple[tuple[int, int], ...] = ((90, 100), (80, 50), (70, 25))


@dataclass(frozen=True, slots=True)
class RewardQuantities:
    base_experience: int
    time_bonus: int
    score_bonus: int
    experience: int
    coins: int


def _scaled(value: int, ratio: tuple[int, int]) -> int:
    numerator, denominator = ratio
    return value * numerator // denominator


def _time_bonus(time_spent: int) -> int:
    for minutes, bonus in TIME_BONUSES:
        if time_spent > minutes:
            return bonus
    return 0


def _score_bonus(score: int) -> int:
    for threshold, bonus in SCORE_BONUSES:
        if score >= threshold:
            return bonus
    return 0


def compute_rewards(score: int, time_spent: int) -> RewardQuantities:
    """Compute experience and coins for a completion.

    Inputs are assumed validated (score in [0, 100], time_spent >= 0).
    """
    base = _scaled(score, SCORE_MULTIPLIER) + _scaled(time_spent, TIME_MULTIPLIER)
    time_bonus = _time_bonus(time_spent)
    score_bonus = _score_bonus(score)
    experience = base + time_bonus + score_bonus
    return RewardQuantities(
        base_experience=base,
        time_bonus=time_bonus,
        score_bonus=score_bonus,
        experience=experience,
        coins=_scaled(experience, COIN_RATE),
    )
