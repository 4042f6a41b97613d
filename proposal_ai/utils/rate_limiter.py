"""
Short-window request rate limiter for provider calls.

Complements the daily/monthly quota: a per-user token bucket caps bursts and
the sustained per-minute rate, and a sliding window caps requests per hour.
The limiter only answers allow/deny; it never waits or retries.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from proposal_ai.config.user_roles import UNLIMITED, UserRole

HOUR_SECONDS = 3600.0


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int
    requests_per_hour: int
    burst_allowance: int

    @property
    def is_unlimited(self) -> bool:
        return self.requests_per_minute == UNLIMITED


ROLE_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    UserRole.ADMIN.value: RateLimitConfig(UNLIMITED, UNLIMITED, UNLIMITED),
    UserRole.SUBADMIN.value: RateLimitConfig(100, 1000, 50),
    UserRole.USER.value: RateLimitConfig(30, 300, 10),
}


def limits_for(role: Optional[str], level: Optional[int] = None) -> RateLimitConfig:
    """Role tier scaled by user level: +20% per level above 1, at most double"""
    base = ROLE_RATE_LIMITS.get(role or UserRole.USER.value, ROLE_RATE_LIMITS[UserRole.USER.value])
    if base.is_unlimited:
        return base
    percent = min(100 + (level - 1) * 20, 200) if level and level > 1 else 100
    return RateLimitConfig(
        requests_per_minute=base.requests_per_minute * percent // 100,
        requests_per_hour=base.requests_per_hour * percent // 100,
        burst_allowance=base.burst_allowance * percent // 100,
    )


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_seconds: float = 0.0
    reason: Optional[str] = None


@dataclass
class _UserWindow:
    tokens: float
    last_refill: float
    request_times: List[float] = field(default_factory=list)


class RateLimiter:
    """
    Per-user rate gate kept in process memory.

    The bucket holds burst_allowance tokens and refills at
    requests_per_minute / 60 tokens per second. An allowed request spends one
    token and is recorded in the hourly window; a denied one records nothing.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self._windows: Dict[str, _UserWindow] = {}
        self.lock = asyncio.Lock()

    async def check(self, user_id: str, role: Optional[str], level: Optional[int] = None) -> RateLimitResult:
        limits = limits_for(role, level)
        if limits.is_unlimited:
            return RateLimitResult(allowed=True, remaining=UNLIMITED)

        async with self.lock:
            now = self.clock()
            window = self._windows.get(user_id)
            if window is None:
                window = _UserWindow(tokens=float(limits.burst_allowance), last_refill=now)
                self._windows[user_id] = window

            refill_rate = limits.requests_per_minute / 60.0
            window.tokens = min(
                float(limits.burst_allowance),
                window.tokens + (now - window.last_refill) * refill_rate,
            )
            window.last_refill = now

            if window.tokens < 1:
                wait = (1 - window.tokens) / refill_rate if refill_rate else 60.0
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after_seconds=round(wait, 2),
                    reason=f"per-minute limit of {limits.requests_per_minute} requests exceeded",
                )

            # Clean up timestamps older than an hour
            window.request_times = [t for t in window.request_times if now - t < HOUR_SECONDS]
            if len(window.request_times) >= limits.requests_per_hour:
                wait = HOUR_SECONDS - (now - window.request_times[0])
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after_seconds=round(max(wait, 0.0), 2),
                    reason=f"hourly limit of {limits.requests_per_hour} requests exceeded",
                )

            window.tokens -= 1
            window.request_times.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=min(int(window.tokens), limits.requests_per_hour - len(window.request_times)),
            )

    def reset(self, user_id: Optional[str] = None):
        if user_id is None:
            self._windows.clear()
        else:
            self._windows.pop(user_id, None)
