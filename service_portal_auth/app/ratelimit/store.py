"""
Storage backends for login rate-limit records.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Tuple

import redis.asyncio as redis

from shared.logging import get_logger
from .clock import Clock, SystemClock


@dataclass
class RateLimitRecord:
    """Failed-attempt state for one client identifier."""
    count: int
    last_attempt: float
    blocked: bool = False

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "RateLimitRecord":
        return cls(
            count=int(data["count"]),
            last_attempt=float(data["last_attempt"]),
            blocked=bool(data.get("blocked", False)),
        )


class RateLimitStore(ABC):
    """Key/value store for rate-limit records with per-entry TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[RateLimitRecord]:
        ...

    @abstractmethod
    async def put(self, key: str, record: RateLimitRecord, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store. State is lost on restart.

    Expired entries are dropped when read and, at most once per
    ``sweep_interval`` seconds, in bulk on write, so identifiers that never
    come back do not accumulate.
    """

    def __init__(self, clock: Optional[Clock] = None, sweep_interval: float = 60.0):
        self._clock = clock or SystemClock()
        self._entries: Dict[str, Tuple[RateLimitRecord, float]] = {}
        self.sweep_interval = sweep_interval
        self._next_sweep_at = self._clock.now() + sweep_interval

    async def get(self, key: str) -> Optional[RateLimitRecord]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        record, expires_at = entry
        if self._clock.now() >= expires_at:
            del self._entries[key]
            return None
        # copy so callers cannot mutate stored state without a put
        return RateLimitRecord(record.count, record.last_attempt, record.blocked)

    async def put(self, key: str, record: RateLimitRecord, ttl_seconds: float) -> None:
        now = self._clock.now()
        if now >= self._next_sweep_at:
            self._sweep(now)
        stored = RateLimitRecord(record.count, record.last_attempt, record.blocked)
        self._entries[key] = (stored, now + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep_at = now + self.sweep_interval

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed store shared by every service instance.

    Store outages are logged and treated as "no record" so that a Redis
    failure degrades to an unlimited login endpoint instead of an
    unavailable one.
    """

    KEY_PREFIX = "login_rate_limit:"

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("portal_auth.rate_limit_store")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def get(self, key: str) -> Optional[RateLimitRecord]:
        try:
            client = await self._get_redis()
            raw = await client.get(self._make_key(key))
        except redis.RedisError as e:
            self.logger.error("Rate limit store read failed", error=str(e))
            return None

        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return RateLimitRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning("Discarding corrupt rate limit record", key=key, error=str(e))
            return None

    async def put(self, key: str, record: RateLimitRecord, ttl_seconds: float) -> None:
        try:
            client = await self._get_redis()
            await client.setex(
                self._make_key(key),
                max(1, math.ceil(ttl_seconds)),
                json.dumps(record.to_dict())
            )
        except redis.RedisError as e:
            self.logger.error("Rate limit store write failed", error=str(e))

    async def delete(self, key: str) -> None:
        try:
            client = await self._get_redis()
            await client.delete(self._make_key(key))
        except redis.RedisError as e:
            self.logger.error("Rate limit store delete failed", error=str(e))

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except redis.RedisError:
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_rate_limit_store(backend: str, redis_url: str, clock: Optional[Clock] = None) -> RateLimitStore:
    """Create the store selected by configuration."""
    if backend == "redis":
        return RedisRateLimitStore(redis_url)
    return InMemoryRateLimitStore(clock)
