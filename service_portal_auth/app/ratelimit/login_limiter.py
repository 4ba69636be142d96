"""
Failed-login limiter for the portal login endpoint.

Per client identifier the limiter walks through::

    ABSENT -> ACTIVE(count < max_attempts) -> BLOCKED -> ABSENT
                 |                                        ^
                 +---- idle longer than attempt_window ---+

A record becomes BLOCKED on the failure that reaches ``max_attempts``; that
attempt itself was admitted by the preceding check. BLOCKED lasts
``block_duration`` seconds from the last failure and cannot be lifted
manually. Successful logins delete the record.
"""

import asyncio
import math
import zlib
from dataclasses import dataclass
from typing import List, Optional

from shared.logging import get_logger
from .clock import Clock, SystemClock
from .store import RateLimitRecord, RateLimitStore


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of an admission check."""
    allowed: bool
    remaining_attempts: int
    blocked_until: Optional[float] = None


class LoginRateLimiter:
    """Admission control for login attempts, keyed by client identifier."""

    def __init__(self,
                 store: RateLimitStore,
                 max_attempts: int = 5,
                 attempt_window: float = 5 * 60,
                 block_duration: float = 15 * 60,
                 clock: Optional[Clock] = None,
                 lock_shards: int = 64):
        self.store = store
        self.max_attempts = max_attempts
        self.attempt_window = attempt_window
        self.block_duration = block_duration
        self.clock = clock or SystemClock()
        self.logger = get_logger("portal_auth.rate_limiter")
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(max(1, lock_shards))]

    @property
    def record_ttl(self) -> float:
        return max(self.attempt_window, self.block_duration)

    def _lock_for(self, client_id: str) -> asyncio.Lock:
        # crc32 rather than hash() so shard choice is stable across processes
        return self._locks[zlib.crc32(client_id.encode("utf-8")) % len(self._locks)]

    def _fresh(self) -> RateLimitDecision:
        return RateLimitDecision(allowed=True, remaining_attempts=self.max_attempts)

    async def check_rate_limit(self, client_id: str) -> RateLimitDecision:
        """Decide whether a login attempt from ``client_id`` may proceed.

        Expired blocks and stale attempt windows are reset here, so the
        call may delete the stored record. Without an intervening failure
        repeated calls return the same remaining count.
        """
        async with self._lock_for(client_id):
            now = self.clock.now()
            record = await self.store.get(client_id)

            if record is None:
                return self._fresh()

            if record.blocked:
                blocked_until = record.last_attempt + self.block_duration
                if now < blocked_until:
                    return RateLimitDecision(
                        allowed=False,
                        remaining_attempts=0,
                        blocked_until=blocked_until
                    )
                await self.store.delete(client_id)
                self.logger.info("Login block expired", client_id=client_id)
                return self._fresh()

            if now - record.last_attempt > self.attempt_window:
                await self.store.delete(client_id)
                return self._fresh()

            return RateLimitDecision(
                allowed=record.count < self.max_attempts,
                remaining_attempts=max(0, self.max_attempts - record.count)
            )

    async def record_failed_attempt(self, client_id: str) -> RateLimitRecord:
        """Count a failed credential check against ``client_id``."""
        async with self._lock_for(client_id):
            now = self.clock.now()
            record = await self.store.get(client_id)

            stale = (
                record is not None
                and not record.blocked
                and now - record.last_attempt > self.attempt_window
            )
            if record is None or stale:
                record = RateLimitRecord(count=1, last_attempt=now)
            else:
                record.count += 1
                record.last_attempt = now

            if record.count >= self.max_attempts and not record.blocked:
                record.blocked = True
                self.logger.warning(
                    "Client blocked after repeated login failures",
                    client_id=client_id,
                    attempts=record.count,
                    block_seconds=self.block_duration
                )

            await self.store.put(client_id, record, self.record_ttl)
            return record

    async def clear_attempts(self, client_id: str) -> None:
        """Forget every failure recorded for ``client_id``."""
        async with self._lock_for(client_id):
            await self.store.delete(client_id)

    def wait_minutes(self, decision: RateLimitDecision) -> int:
        """Caller-facing estimate of how long a denied client must wait."""
        if decision.blocked_until is None:
            return math.ceil(self.block_duration / 60)
        remaining = max(0.0, decision.blocked_until - self.clock.now())
        return max(1, math.ceil(remaining / 60))
