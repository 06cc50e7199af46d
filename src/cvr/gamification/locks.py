"""Per-user serialization of the completion critical section.

Within one process, completions for the same user queue on an asyncio.Lock
while different users run in parallel. Cross-process safety comes from the
row locks taken inside the database transaction.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from cvr.exceptions import LockTimeout

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class UserLockRegistry:
    """Map of user id to lock. Entries are dropped once nobody holds or waits on them."""

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._entries: dict[int, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, user_id: int) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, user_id: int, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the user's lock for the duration of the block.

        Raises LockTimeout if the lock is not acquired within ``timeout``
        seconds (defaults to the registry timeout).
        """
        wait = self.timeout if timeout is None else timeout
        entry = self._entries.get(user_id)
        if entry is None:
            entry = _LockEntry()
            self._entries[user_id] = entry
        entry.holders += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=wait)
            except TimeoutError:
                logger.warning("Lock wait for user %d exceeded %.1fs", user_id, wait)
                raise LockTimeout(user_id, wait) from None
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(user_id, None)
