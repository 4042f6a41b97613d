"""
Tests for the short-window rate limiter and its place in front of provider calls
"""

import pytest

from conftest import openai_payload
from proposal_ai.core.exceptions import QuotaExceededError, RateLimitExceededError
from proposal_ai.schemas.usage import UserProfile
from proposal_ai.services.quota_governor import PROFILE_TABLE, QuotaGovernor
from proposal_ai.utils.rate_limiter import RateLimiter, limits_for


class Ticker:
    """Monotonic clock advanced by hand"""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    "role,level,expected",
    [
        ("user", 1, (30, 300, 10)),
        ("user", 3, (42, 420, 14)),
        ("user", 9, (60, 600, 20)),
        ("subadmin", None, (100, 1000, 50)),
        ("mystery", None, (30, 300, 10)),
        (None, None, (30, 300, 10)),
    ],
)
def test_limits_scale_with_role_and_level(role, level, expected):
    limits = limits_for(role, level)
    assert (limits.requests_per_minute, limits.requests_per_hour, limits.burst_allowance) == expected


def test_admin_is_unlimited():
    assert limits_for("admin", 5).is_unlimited


@pytest.mark.asyncio
async def test_burst_is_capped_and_refills():
    ticker = Ticker()
    limiter = RateLimiter(clock=ticker)

    results = [await limiter.check("u1", "user", 1) for _ in range(10)]
    assert all(r.allowed for r in results)
    assert results[-1].remaining == 0

    denied = await limiter.check("u1", "user", 1)
    assert not denied.allowed
    assert denied.retry_after_seconds == 2.0
    assert "per-minute" in denied.reason

    # 30 per minute refills one request every two seconds
    ticker.now += 2
    assert (await limiter.check("u1", "user", 1)).allowed
    assert not (await limiter.check("u1", "user", 1)).allowed


@pytest.mark.asyncio
async def test_users_do_not_share_buckets():
    limiter = RateLimiter(clock=Ticker())
    for _ in range(10):
        await limiter.check("u1", "user", 1)

    assert not (await limiter.check("u1", "user", 1)).allowed
    assert (await limiter.check("u2", "user", 1)).allowed


@pytest.mark.asyncio
async def test_hourly_window():
    ticker = Ticker()
    limiter = RateLimiter(clock=ticker)
    first = ticker.now
    for _ in range(300):
        assert (await limiter.check("u1", "user", 1)).allowed
        ticker.now += 2

    denied = await limiter.check("u1", "user", 1)
    assert not denied.allowed
    assert "hourly" in denied.reason
    assert denied.retry_after_seconds == pytest.approx(3600 - (ticker.now - first))

    ticker.now = first + 3600
    assert (await limiter.check("u1", "user", 1)).allowed


@pytest.mark.asyncio
async def test_admin_never_limited_and_reset_clears_state():
    limiter = RateLimiter(clock=Ticker())
    for _ in range(100):
        assert (await limiter.check("root", "admin", 5)).allowed

    for _ in range(11):
        await limiter.check("u1", "user", 1)
    limiter.reset("u1")
    assert (await limiter.check("u1", "user", 1)).allowed


@pytest.mark.asyncio
async def test_governor_raises_rate_limit_after_quota_check(store, clock):
    governor = QuotaGovernor(store, clock=clock, rate_limiter=RateLimiter(clock=Ticker()))
    profile = UserProfile(id="u1", role="user", user_level=1)
    await store.put(PROFILE_TABLE, "u1", profile.model_dump(mode="json"))

    for _ in range(10):
        await governor.ensure_can_request("u1")

    with pytest.raises(RateLimitExceededError) as exc_info:
        await governor.ensure_can_request("u1")

    error = exc_info.value
    assert isinstance(error, QuotaExceededError)
    assert error.code == "RATE_LIMITED"
    assert error.details == {"retryAfterSeconds": 2.0}


def test_completion_returns_429_when_rate_limited(client, fake_session):
    client.app.state.services.quota.rate_limiter.clock = Ticker()
    for _ in range(10):
        fake_session.queue(openai_payload("ok"))
        response = client.post(
            "/api/ai/completion",
            json={"provider": "openai", "model": "gpt-4o", "prompt": "Hi", "userId": "u1"},
        )
        assert response.status_code == 200

    response = client.post(
        "/api/ai/completion",
        json={"provider": "openai", "model": "gpt-4o", "prompt": "Hi", "userId": "u1"},
    )

    assert response.status_code == 429
    assert response.json()["error"] == "RATE_LIMITED"
    assert len(fake_session.calls) == 10
