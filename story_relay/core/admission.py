"""
Admission control: per-user cooldown and daily quota.
"""

import asyncio
import logging
import math
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from story_relay.i18n import get_message
from story_relay.models.domain import User

from .interfaces import RequestRepository

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check. A denial is a normal result, not an error."""

    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> "AdmissionDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> "AdmissionDecision":
        return cls(False, reason)


class AdmissionController:
    """
    Decides whether a user may start a new request.

    A failure to count ledger entries propagates as RepositoryError; callers
    must treat it as a system failure rather than a denial.
    """

    def __init__(
        self,
        ledger: RequestRepository,
        cooldown_seconds: int,
        daily_limit: int,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ledger = ledger
        self.cooldown_seconds = cooldown_seconds
        self.daily_limit = daily_limit
        self._clock = clock

    async def can_proceed(self, user: User) -> AdmissionDecision:
        now = self._clock()

        if user.last_active_at is not None:
            elapsed = (now - user.last_active_at).total_seconds()
            if elapsed < self.cooldown_seconds:
                wait = max(1, math.ceil(self.cooldown_seconds - elapsed))
                log.debug(f"User {user.id} in cooldown for {wait}s")
                return AdmissionDecision.deny(
                    get_message(user.language_code, "cooldown", wait)
                )

        if not user.is_bot_premium(now):
            count = await self.ledger.count_today_successes(user.id)
            if count >= self.daily_limit:
                log.debug(f"User {user.id} hit daily limit {count}/{self.daily_limit}")
                return AdmissionDecision.deny(
                    get_message(
                        user.language_code, "daily_limit", count, self.daily_limit
                    )
                )

        return AdmissionDecision.allow()


class UserGate:
    """
    Per-user asyncio locks, so one user's requests run one after another.

    Holding the lock from admission through the ledger write closes the
    check-then-record race on the daily quota. Locks nobody holds or waits
    on are evicted LRU.
    """

    def __init__(self, max_locks: int = 1000):
        self._locks: OrderedDict[int, asyncio.Lock] = OrderedDict()
        self._holders: dict[int, int] = {}
        self._max_locks = max_locks
        self._main_lock = asyncio.Lock()

    def _lookup(self, user_id: int) -> asyncio.Lock:
        if user_id in self._locks:
            self._locks.move_to_end(user_id)
            return self._locks[user_id]

        lock = asyncio.Lock()
        self._locks[user_id] = lock
        if len(self._locks) > self._max_locks:
            for key, candidate in list(self._locks.items()):
                if key != user_id and not candidate.locked() and key not in self._holders:
                    del self._locks[key]
                    break
        return lock

    async def get_lock(self, user_id: int) -> asyncio.Lock:
        async with self._main_lock:
            return self._lookup(user_id)

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        """Runs the block under the user's lock, counting waiters as holders."""
        async with self._main_lock:
            lock = self._lookup(user_id)
            self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]

    def __len__(self) -> int:
        return len(self._locks)
