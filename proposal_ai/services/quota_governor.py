"""
Quota Governor
Per-user daily/monthly API request quotas computed from the usage log.

Usage is never kept as a running counter: every check sums `request_count`
over the `user_api_usage` rows for the window. Recording upserts one row per
(user, date, hour, model) bucket.
"""

import asyncio
from collections import defaultdict
from datetime import date, datetime
from typing import Callable, Dict, Optional
import logging

from proposal_ai.abstractions.store import KeyValueStore
from proposal_ai.config.user_roles import UNLIMITED, get_role_definition, get_role_key
from proposal_ai.core.exceptions import (
    QuotaExceededError,
    RateLimitExceededError,
    ResourceNotFoundError,
    ValidationError,
)
from proposal_ai.schemas.session import utcnow
from proposal_ai.schemas.usage import (
    HourlyUsage,
    ModelUsage,
    QuotaGrant,
    QuotaInfo,
    QuotaStatus,
    UsageRecord,
    UsageStats,
    UserProfile,
)
from proposal_ai.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

USAGE_TABLE = "user_api_usage"
PROFILE_TABLE = "user_profiles"


def month_bounds(day: date) -> tuple:
    """(first day of month, first day of next month) as ISO strings"""
    start = day.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start.isoformat(), end.isoformat()


class QuotaGovernor:
    """Gatekeeper in front of every provider call"""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.store = store
        self.clock = clock or utcnow
        self.rate_limiter = rate_limiter
        # Bucket read-then-upsert is not atomic in the store
        self._record_lock = asyncio.Lock()

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        row = await self.store.get(PROFILE_TABLE, user_id)
        if not row:
            return None
        return UserProfile(**row)

    async def _sum_requests(self, user_id: str, **bounds) -> int:
        rows = await self.store.query(USAGE_TABLE, filters={"user_id": user_id}, **bounds)
        return sum(int(row.get("request_count") or 0) for row in rows)

    async def get_quota_info(self, user_id: str) -> QuotaInfo:
        profile = await self.get_profile(user_id)
        role = profile.role if profile else None
        level = profile.user_level if profile else None
        definition = get_role_definition(role, level)
        additional = int((profile.metadata or {}).get("additional_quota", 0)) if profile else 0

        today = self.clock().date()
        month_start, next_month = month_bounds(today)
        daily_used = await self._sum_requests(user_id, gte={"date": today.isoformat()}, lte={"date": today.isoformat()})
        monthly_used = await self._sum_requests(user_id, gte={"date": month_start}, lt={"date": next_month})

        if definition["daily_api_quota"] == UNLIMITED:
            return QuotaInfo(
                user_id=user_id,
                daily_quota=UNLIMITED,
                monthly_quota=UNLIMITED,
                daily_used=daily_used,
                monthly_used=monthly_used,
                daily_remaining=UNLIMITED,
                monthly_remaining=UNLIMITED,
                is_unlimited=True,
                additional_quota=additional,
            )

        daily_quota = definition["daily_api_quota"] + additional
        monthly_quota = definition["monthly_api_quota"] + additional * 30
        return QuotaInfo(
            user_id=user_id,
            daily_quota=daily_quota,
            monthly_quota=monthly_quota,
            daily_used=daily_used,
            monthly_used=monthly_used,
            daily_remaining=max(0, daily_quota - daily_used),
            monthly_remaining=max(0, monthly_quota - monthly_used),
            is_unlimited=False,
            additional_quota=additional,
        )

    async def check_exceeded(self, user_id: str) -> QuotaStatus:
        info = await self.get_quota_info(user_id)
        if info.is_unlimited:
            return QuotaStatus(
                daily_exceeded=False,
                monthly_exceeded=False,
                can_make_request=True,
                quota_info=info,
            )

        daily_exceeded = info.daily_remaining <= 0
        monthly_exceeded = info.monthly_remaining <= 0
        return QuotaStatus(
            daily_exceeded=daily_exceeded,
            monthly_exceeded=monthly_exceeded,
            can_make_request=not (daily_exceeded or monthly_exceeded),
            quota_info=info,
        )

    async def ensure_can_request(self, user_id: str) -> QuotaStatus:
        """Raise QuotaExceededError when the user may not issue another request"""
        status = await self.check_exceeded(user_id)
        if not status.can_make_request:
            logger.warning(
                f"[QUOTA] Blocked user {user_id}: daily {status.quota_info.daily_used}/"
                f"{status.quota_info.daily_quota}, monthly {status.quota_info.monthly_used}/"
                f"{status.quota_info.monthly_quota}"
            )
            raise QuotaExceededError(
                user_id,
                status.daily_exceeded,
                status.monthly_exceeded,
                details={"quotaInfo": status.quota_info.model_dump()},
            )

        if self.rate_limiter is not None:
            profile = await self.get_profile(user_id)
            result = await self.rate_limiter.check(
                user_id,
                profile.role if profile else None,
                profile.user_level if profile else None,
            )
            if not result.allowed:
                logger.warning(f"[QUOTA] Rate limited user {user_id}: {result.reason}")
                raise RateLimitExceededError(
                    user_id,
                    result.reason,
                    result.retry_after_seconds,
                    details={"retryAfterSeconds": result.retry_after_seconds},
                )
        return status

    async def grant_additional(
        self,
        user_id: str,
        amount: int,
        granted_by: str,
        reason: Optional[str] = None,
    ) -> QuotaInfo:
        """Raise the user's daily allowance by `amount` and keep an audit entry"""
        if amount is None or amount <= 0:
            raise ValidationError("Grant amount must be a positive integer", field="amount")

        profile = await self.get_profile(user_id)
        if profile is None:
            raise ResourceNotFoundError("User", user_id)

        metadata = dict(profile.metadata or {})
        grants = list(metadata.get("quota_grants") or [])
        grant = QuotaGrant(
            amount=amount,
            granted_by=granted_by,
            granted_at=self.clock().isoformat(),
            reason=reason,
        )
        grants.append(grant.model_dump())
        metadata["quota_grants"] = grants
        metadata["additional_quota"] = int(metadata.get("additional_quota", 0)) + amount

        profile.metadata = metadata
        await self.store.put(PROFILE_TABLE, user_id, profile.model_dump(mode="json"))
        logger.info(f"[QUOTA] Granted {amount} extra requests to {user_id} (by {granted_by})")
        return await self.get_quota_info(user_id)

    async def reset_user_quota(self, user_id: str) -> QuotaInfo:
        profile = await self.get_profile(user_id)
        if profile is None:
            raise ResourceNotFoundError("User", user_id)

        metadata = dict(profile.metadata or {})
        metadata.pop("additional_quota", None)
        metadata.pop("quota_grants", None)
        profile.metadata = metadata
        await self.store.put(PROFILE_TABLE, user_id, profile.model_dump(mode="json"))
        logger.info(f"[QUOTA] Reset additional quota for {user_id}")
        return await self.get_quota_info(user_id)

    async def record_usage(self, record: UsageRecord) -> UsageRecord:
        """Upsert one bucket row; writing the same record twice leaves one row"""
        key = record.bucket_key
        await self.store.put(USAGE_TABLE, key, {**record.model_dump(mode="json"), "id": key})
        return record

    async def record_request(
        self,
        user_id: str,
        provider: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost: float = 0.0,
        response_time_ms: int = 0,
        endpoint: Optional[str] = None,
        success: bool = True,
    ) -> UsageRecord:
        """Count one request against the current hour's bucket"""
        now = self.clock()
        record = UsageRecord(
            user_id=user_id,
            api_provider=provider,
            date=now.date().isoformat(),
            hour=now.hour,
            model=model,
            request_count=1,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost=cost,
            response_time_ms=response_time_ms,
            success=success,
            endpoint=endpoint,
            created_at=now,
        )

        async with self._record_lock:
            existing = await self.store.get(USAGE_TABLE, record.bucket_key)
            if existing:
                record.request_count += int(existing.get("request_count") or 0)
                record.input_tokens += int(existing.get("input_tokens") or 0)
                record.output_tokens += int(existing.get("output_tokens") or 0)
                record.total_tokens += int(existing.get("total_tokens") or 0)
                record.cost += float(existing.get("cost") or 0.0)
                record.response_time_ms += int(existing.get("response_time_ms") or 0)

            await self.record_usage(record)
        logger.info(
            f"[QUOTA] Recorded {provider}/{model} request for {user_id} "
            f"({record.total_tokens} tokens in bucket {now.hour:02d}h)"
        )
        return record

    async def get_usage_stats(self, user_id: str, start_date: str, end_date: str) -> UsageStats:
        rows = await self.store.query(
            USAGE_TABLE,
            filters={"user_id": user_id},
            gte={"date": start_date},
            lte={"date": end_date},
        )
        if not rows:
            return UsageStats(
                hourly_distribution=[HourlyUsage(hour=h, requests=0) for h in range(24)]
            )

        total_requests = 0
        total_tokens = 0
        total_cost = 0.0
        by_model: Dict[str, int] = defaultdict(int)
        by_hour: Dict[int, int] = defaultdict(int)
        for row in rows:
            count = int(row.get("request_count") or 0)
            total_requests += count
            total_tokens += int(row.get("total_tokens") or 0)
            total_cost += float(row.get("cost") or 0.0)
            by_model[row.get("model") or "unknown"] += count
            by_hour[int(row.get("hour") or 0)] += count

        try:
            days = (date.fromisoformat(end_date) - date.fromisoformat(start_date)).days + 1
        except ValueError:
            days = len({row.get("date") for row in rows})
        days = max(1, days)

        top_models = sorted(by_model.items(), key=lambda item: item[1], reverse=True)[:5]
        return UsageStats(
            total_requests=total_requests,
            total_tokens=total_tokens,
            total_cost=total_cost,
            avg_requests_per_day=total_requests / days,
            top_models=[ModelUsage(model=m, usage=u) for m, u in top_models],
            hourly_distribution=[HourlyUsage(hour=h, requests=by_hour.get(h, 0)) for h in range(24)],
        )

    @staticmethod
    def role_key_for(profile: Optional[UserProfile]) -> str:
        if profile is None:
            return "user_level_1"
        return get_role_key(profile.role, profile.user_level)
