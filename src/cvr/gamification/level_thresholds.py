"""Level thresholds and computation.

Levels are a pure function of total experience. The breakpoint table is an
explicit ``LevelTable`` object so callers can inject their own; the engine
uses ``DEFAULT_LEVEL_TABLE`` unless told otherwise.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from cvr.exceptions import InvalidArgument

LEVEL_UP_COINS_PER_LEVEL = 50


@dataclass(frozen=True, slots=True)
class Level:
    level: int
    name: str
    icon: str
    experience_required: int


@dataclass(frozen=True, slots=True)
class LevelInfo:
    """Level snapshot for a given experience total."""

    level: int
    name: str
    icon: str
    progress_to_next: int
    experience_required_for_next: int
    next_level: int | None


class LevelTable:
    """Ordered, strictly increasing experience breakpoints starting at 0."""

    def __init__(self, levels: list[Level] | tuple[Level, ...]) -> None:
        if not levels:
            msg = "Level table must contain at least one level"
            raise ValueError(msg)
        if levels[0].experience_required != 0:
            msg = "First level must start at 0 experience"
            raise ValueError(msg)
        for prev, cur in zip(levels, levels[1:]):
            if cur.experience_required <= prev.experience_required:
                msg = f"Breakpoints must be strictly increasing (level {cur.level})"
                raise ValueError(msg)
            if cur.level <= prev.level:
                msg = f"Level numbers must be strictly increasing (level {cur.level})"
                raise ValueError(msg)
        self._levels = tuple(levels)
        self._breakpoints = [lvl.experience_required for lvl in self._levels]

    def __len__(self) -> int:
        return len(self._levels)

    def __iter__(self):
        return iter(self._levels)

    @property
    def max_level(self) -> Level:
        return self._levels[-1]

    def level_for(self, total_experience: int) -> LevelInfo:
        """Compute level info from total experience.

        Raises InvalidArgument for negative input. At the cap, progress is
        100 and nothing more is required.
        """
        if total_experience < 0:
            msg = f"Experience must be non-negative, got {total_experience}"
            raise InvalidArgument(msg)

        idx = bisect_right(self._breakpoints, total_experience) - 1
        current = self._levels[idx]

        if idx == len(self._levels) - 1:
            return LevelInfo(
                level=current.level,
                name=current.name,
                icon=current.icon,
                progress_to_next=100,
                experience_required_for_next=0,
                next_level=None,
            )

        nxt = self._levels[idx + 1]
        span = nxt.experience_required - current.experience_required
        into = total_experience - current.experience_required
        return LevelInfo(
            level=current.level,
            name=current.name,
            icon=current.icon,
            progress_to_next=into * 100 // span,
            experience_required_for_next=nxt.experience_required - total_experience,
            next_level=nxt.level,
        )

    def levels_between(self, old_level: int, new_level: int) -> list[Level]:
        """Levels reached when moving from ``old_level`` (exclusive) to ``new_level`` (inclusive)."""
        return [lvl for lvl in self._levels if old_level < lvl.level <= new_level]


DEFAULT_LEVEL_TABLE = LevelTable([
    Level(1, "Novice", "\U0001f331", 0),
    Level(2, "Apprentice", "\U0001f4d6", 100),
    Level(3, "Student", "\U0001f392", 300),
    Level(4, "Learner", "\U0001f4da", 600),
    Level(5, "Scholar", "\U0001f393", 1000),
    Level(6, "Expert", "\U0001f52c", 1500),
    Level(7, "Master", "\U0001f468‍\U0001f3eb", 2200),
    Level(8, "Guru", "\U0001f9d9‍♂️", 3000),
    Level(9, "Sage", "\U0001f468‍\U0001f393", 4000),
    Level(10, "Legend", "\U0001f451", 5500),
])


def level_for(total_experience: int, table: LevelTable = DEFAULT_LEVEL_TABLE) -> LevelInfo:
    return table.level_for(total_experience)


def level_up_coin_reward(level: int) -> int:
    """Coins granted on reaching ``level``."""
    return level * LEVEL_UP_COINS_PER_LEVEL
