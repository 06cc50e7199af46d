"""Pydantic models for reward engine results and events."""

from __future__ import annotations

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field


# --- Level ---


class LevelUp(BaseModel):
    old_level: int
    new_level: int
    name: str
    icon: str
    coins: int


# --- Streak ---


class StreakUpdate(BaseModel):
    streak_type: str
    current_streak: int
    longest_streak: int
    last_activity_date: date
    freezes_available: int
    freezes_used: int
    created: bool = False
    incremented: bool = False
    freeze_consumed: bool = False
    reset: bool = False
    milestone: int | None = None

    @property
    def changed(self) -> bool:
        return self.created or self.incremented or self.freeze_consumed or self.reset


# --- Goals ---


class GoalCompletion(BaseModel):
    goal_id: int
    period: Literal["daily", "weekly", "monthly"]
    category: str
    target_value: int
    reward_coins: int
    reward_experience: int


# --- Badges ---


class BadgeAward(BaseModel):
    badge_id: int
    slug: str
    name: str
    icon: str = ""
    rarity: str = "common"
    xp_reward: int = 0
    coins_reward: int = 0


# --- Notifications ---


class NotificationEvent(BaseModel):
    user_id: int
    type: Literal["lesson_complete", "level_up", "streak_milestone", "goal_completed", "badge_earned"]
    title: str
    message: str
    icon: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# --- Completion ---


class CompletionResult(BaseModel):
    experience_awarded: int
    coins_awarded: int
    new_level: int | None = None
    level_up: LevelUp | None = None
    streak_updated: bool = False
    current_streak: int = 0
    goals_completed: list[GoalCompletion] = Field(default_factory=list)
    new_badges: list[BadgeAward] = Field(default_factory=list)
    already_processed: bool = False
