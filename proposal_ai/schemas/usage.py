from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from proposal_ai.schemas.session import utcnow


class UsageRecord(BaseModel):
    user_id: str
    api_provider: str
    date: str  # YYYY-MM-DD, UTC
    hour: int = Field(ge=0, le=23)
    model: str
    request_count: int = 1
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    response_time_ms: int = 0
    success: bool = True
    endpoint: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def bucket_key(self) -> str:
        """Composite (user, date, hour, model) key used for idempotent upserts"""
        return f"{self.user_id}:{self.date}:{self.hour:02d}:{self.model}"


class UserProfile(BaseModel):
    id: str
    email: Optional[str] = None
    role: str = "user"
    user_level: Optional[int] = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)


class QuotaGrant(BaseModel):
    amount: int
    granted_by: str
    granted_at: str
    reason: Optional[str] = None


class QuotaInfo(BaseModel):
    user_id: str
    daily_quota: int
    monthly_quota: int
    daily_used: int
    monthly_used: int
    daily_remaining: int
    monthly_remaining: int
    is_unlimited: bool
    additional_quota: int = 0


class QuotaStatus(BaseModel):
    daily_exceeded: bool
    monthly_exceeded: bool
    can_make_request: bool
    quota_info: QuotaInfo


class ModelUsage(BaseModel):
    model: str
    usage: int


class HourlyUsage(BaseModel):
    hour: int
    requests: int


class UsageStats(BaseModel):
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_requests_per_day: float = 0.0
    top_models: List[ModelUsage] = Field(default_factory=list)
    hourly_distribution: List[HourlyUsage] = Field(default_factory=list)
