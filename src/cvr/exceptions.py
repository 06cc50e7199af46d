"""Reward engine error taxonomy.

Only errors raised from the critical section reach callers. Failures in the
best-effort follow-up (badges, notifications) are logged as BestEffortFailure
and never propagate.
"""

from __future__ import annotations


class RewardEngineError(Exception):
    """Base class for all reward engine errors."""

    retryable: bool = False


class ValidationError(RewardEngineError, ValueError):
    """Malformed input, rejected before any state is touched."""


class InvalidArgument(ValidationError):
    """An argument is outside the domain of the operation (e.g. negative XP)."""


class InsufficientFunds(RewardEngineError):
    """A spend would drive the wallet's coin balance below zero."""

    def __init__(self, user_id: int, balance: int, requested: int) -> None:
        super().__init__(
            f"User {user_id} has {balance} coins, cannot spend {requested}"
        )
        self.user_id = user_id
        self.balance = balance
        self.requested = requested


class ConcurrencyConflict(RewardEngineError):
    """Contention on a user's critical section. Safe to retry with backoff."""

    retryable = True


class LockTimeout(ConcurrencyConflict):
    """The per-user lock could not be acquired within the configured wait."""

    def __init__(self, user_id: int, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f}s waiting for user {user_id}")
        self.user_id = user_id
        self.timeout = timeout


class PersistenceError(RewardEngineError):
    """Storage failed during the critical section; the whole section was rolled back."""


class BestEffortFailure(RewardEngineError):
    """Badge evaluation or notification delivery failed after the critical section committed."""
