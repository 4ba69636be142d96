"""
Login brute-force defense.

Holds the per-client failed-attempt state machine and the stores it can
persist records into (process-local memory or a shared Redis).
"""

from .clock import Clock, SystemClock
from .login_limiter import LoginRateLimiter, RateLimitDecision
from .store import (
    InMemoryRateLimitStore,
    RateLimitRecord,
    RateLimitStore,
    RedisRateLimitStore,
    build_rate_limit_store,
)

__all__ = [
    "Clock",
    "SystemClock",
    "LoginRateLimiter",
    "RateLimitDecision",
    "RateLimitRecord",
    "RateLimitStore",
    "InMemoryRateLimitStore",
    "RedisRateLimitStore",
    "build_rate_limit_store",
]
