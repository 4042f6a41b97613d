"""
Tests for per-user quota accounting
"""

import asyncio
from datetime import date

import pytest

from proposal_ai.abstractions.store import InMemoryStore
from proposal_ai.core.exceptions import QuotaExceededError, ResourceNotFoundError, ValidationError
from proposal_ai.schemas.usage import UsageRecord, UserProfile
from proposal_ai.services.quota_governor import (
    PROFILE_TABLE,
    USAGE_TABLE,
    QuotaGovernor,
    month_bounds,
)


async def _add_profile(store, user_id, role="user", level=1, metadata=None):
    profile = UserProfile(id=user_id, role=role, user_level=level, metadata=metadata or {})
    await store.put(PROFILE_TABLE, user_id, profile.model_dump(mode="json"))


def _usage(user_id, day, count, hour=9, model="gpt-4o"):
    return UsageRecord(
        user_id=user_id,
        api_provider="openai",
        date=day,
        hour=hour,
        model=model,
        request_count=count,
        total_tokens=count * 10,
    )


def test_month_bounds_rolls_over_year():
    assert month_bounds(date(2026, 12, 9)) == ("2026-12-01", "2027-01-01")
    assert month_bounds(date(2026, 3, 15)) == ("2026-03-01", "2026-04-01")


@pytest.mark.asyncio
async def test_user_without_profile_gets_entry_level_quota(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    info = await governor.get_quota_info("nobody")
    assert info.daily_quota == 500
    assert info.monthly_quota == 15000
    assert info.daily_used == 0
    assert not info.is_unlimited


@pytest.mark.asyncio
async def test_role_level_selects_quota(store, clock):
    await _add_profile(store, "u3", level=3)
    await _add_profile(store, "sub", role="subadmin")
    governor = QuotaGovernor(store, clock=clock)
    assert (await governor.get_quota_info("u3")).daily_quota == 2000
    assert (await governor.get_quota_info("sub")).monthly_quota == 300000


@pytest.mark.asyncio
async def test_using_exactly_the_quota_blocks_the_next_request(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    await governor.record_usage(_usage("u1", "2026-03-15", 500))

    status = await governor.check_exceeded("u1")

    assert status.daily_exceeded
    assert not status.can_make_request
    assert status.quota_info.daily_remaining == 0


@pytest.mark.asyncio
async def test_one_request_below_quota_then_one_more(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    await governor.record_usage(_usage("u1", "2026-03-15", 499, hour=8))

    assert (await governor.check_exceeded("u1")).can_make_request

    await governor.record_request("u1", "openai", "gpt-4o", input_tokens=10, output_tokens=5)

    with pytest.raises(QuotaExceededError) as exc_info:
        await governor.ensure_can_request("u1")
    assert exc_info.value.daily_exceeded
    assert not exc_info.value.monthly_exceeded
    assert exc_info.value.details["quotaInfo"]["daily_used"] == 500


@pytest.mark.asyncio
async def test_admin_is_never_blocked(store, clock):
    await _add_profile(store, "root", role="admin")
    governor = QuotaGovernor(store, clock=clock)
    await governor.record_usage(_usage("root", "2026-03-15", 1_000_000))

    status = await governor.ensure_can_request("root")

    assert status.can_make_request
    assert status.quota_info.is_unlimited
    assert status.quota_info.daily_quota == -1
    assert status.quota_info.daily_remaining == -1
    assert status.quota_info.daily_used == 1_000_000


@pytest.mark.asyncio
async def test_windows_use_utc_day_and_calendar_month(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    await governor.record_usage(_usage("u1", "2026-03-14", 40))
    await governor.record_usage(_usage("u1", "2026-03-15", 2))
    await governor.record_usage(_usage("u1", "2026-02-28", 100))
    await governor.record_usage(_usage("u1", "2026-04-01", 100))
    await governor.record_usage(_usage("other", "2026-03-15", 7))

    info = await governor.get_quota_info("u1")

    assert info.daily_used == 2
    assert info.monthly_used == 42


@pytest.mark.asyncio
async def test_recording_same_bucket_twice_is_idempotent(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    record = _usage("u1", "2026-03-15", 3)
    await governor.record_usage(record)
    await governor.record_usage(record)

    rows = await store.query(USAGE_TABLE, filters={"user_id": "u1"})
    assert len(rows) == 1
    assert rows[0]["id"] == "u1:2026-03-15:09:gpt-4o"
    assert (await governor.get_quota_info("u1")).daily_used == 3


@pytest.mark.asyncio
async def test_record_request_accumulates_within_hour_bucket(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    await governor.record_request("u1", "openai", "gpt-4o", input_tokens=10, output_tokens=5, cost=0.01)
    record = await governor.record_request("u1", "openai", "gpt-4o", input_tokens=20, output_tokens=5, cost=0.02)

    assert record.request_count == 2
    assert record.total_tokens == 40
    assert record.cost == pytest.approx(0.03)
    assert record.hour == 10

    clock.advance(hours=1)
    await governor.record_request("u1", "openai", "gpt-4o")
    rows = await store.query(USAGE_TABLE, filters={"user_id": "u1"})
    assert len(rows) == 2


class YieldingStore(InMemoryStore):
    """Hands control back to the loop on every read, like a store backed by a thread"""

    async def get(self, table, key):
        await asyncio.sleep(0)
        return await super().get(table, key)


@pytest.mark.asyncio
async def test_concurrent_records_in_one_bucket_are_all_counted(clock):
    store = YieldingStore()
    governor = QuotaGovernor(store, clock=clock)

    await asyncio.gather(*[
        governor.record_request("u1", "openai", "gpt-4o", input_tokens=1) for _ in range(20)
    ])

    rows = await store.query(USAGE_TABLE, filters={"user_id": "u1"})
    assert len(rows) == 1
    assert rows[0]["request_count"] == 20
    assert rows[0]["input_tokens"] == 20


@pytest.mark.asyncio
async def test_grant_raises_daily_and_monthly_allowance(store, clock):
    await _add_profile(store, "u1")
    governor = QuotaGovernor(store, clock=clock)

    info = await governor.grant_additional("u1", 100, granted_by="admin-1", reason="pilot")

    assert info.daily_quota == 600
    assert info.monthly_quota == 15000 + 100 * 30
    assert info.additional_quota == 100
    profile = await governor.get_profile("u1")
    assert profile.metadata["quota_grants"][0]["granted_by"] == "admin-1"
    assert profile.metadata["quota_grants"][0]["reason"] == "pilot"

    await governor.grant_additional("u1", 50, granted_by="admin-2")
    profile = await governor.get_profile("u1")
    assert profile.metadata["additional_quota"] == 150
    assert len(profile.metadata["quota_grants"]) == 2


@pytest.mark.asyncio
async def test_reset_removes_grants(store, clock):
    await _add_profile(store, "u1", metadata={"additional_quota": 200, "quota_grants": [{"amount": 200}], "team": "x"})
    governor = QuotaGovernor(store, clock=clock)

    info = await governor.reset_user_quota("u1")

    assert info.daily_quota == 500
    profile = await governor.get_profile("u1")
    assert profile.metadata == {"team": "x"}


@pytest.mark.asyncio
async def test_grant_validation(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    with pytest.raises(ValidationError):
        await governor.grant_additional("u1", 0, granted_by="admin")
    with pytest.raises(ResourceNotFoundError):
        await governor.grant_additional("missing", 10, granted_by="admin")
    with pytest.raises(ResourceNotFoundError):
        await governor.reset_user_quota("missing")


@pytest.mark.asyncio
async def test_usage_stats(store, clock):
    governor = QuotaGovernor(store, clock=clock)
    await governor.record_usage(_usage("u1", "2026-03-14", 4, hour=9, model="gpt-4o"))
    await governor.record_usage(_usage("u1", "2026-03-15", 7, hour=14, model="claude-3-5-sonnet-20241022"))
    await governor.record_usage(_usage("u1", "2026-03-15", 2, hour=9, model="gpt-4o"))
    await governor.record_usage(_usage("u1", "2026-01-01", 50, hour=1, model="old-model"))

    stats = await governor.get_usage_stats("u1", "2026-03-14", "2026-03-15")

    assert stats.total_requests == 13
    assert stats.total_tokens == 130
    assert stats.avg_requests_per_day == 6.5
    assert [(m.model, m.usage) for m in stats.top_models] == [
        ("claude-3-5-sonnet-20241022", 7),
        ("gpt-4o", 6),
    ]
    assert len(stats.hourly_distribution) == 24
    assert stats.hourly_distribution[9].requests == 6
    assert stats.hourly_distribution[14].requests == 7


@pytest.mark.asyncio
async def test_usage_stats_empty(store, clock):
    stats = await QuotaGovernor(store, clock=clock).get_usage_stats("u1", "2026-03-01", "2026-03-31")
    assert stats.total_requests == 0
    assert [h.requests for h in stats.hourly_distribution] == [0] * 24


def test_role_key_for_profile():
    assert QuotaGovernor.role_key_for(None) == "user_level_1"
    assert QuotaGovernor.role_key_for(UserProfile(id="a", role="admin")) == "admin"
    assert QuotaGovernor.role_key_for(UserProfile(id="b", user_level=4)) == "user_level_4"
