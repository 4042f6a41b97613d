"""
API quota endpoints: balance, grants, resets and usage statistics
"""

from datetime import timedelta
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from proposal_ai.core.dependencies import get_quota_governor
from proposal_ai.services.quota_governor import QuotaGovernor

router = APIRouter()
logger = logging.getLogger(__name__)


class GrantBody(BaseModel):
    amount: int
    grantedBy: str
    reason: Optional[str] = None


@router.get("/{user_id}")
async def get_quota(user_id: str, quota: QuotaGovernor = Depends(get_quota_governor)) -> Dict[str, Any]:
    """
    Current quota and usage for a user
    """
    status = await quota.check_exceeded(user_id)
    profile = await quota.get_profile(user_id)
    return {
        **status.model_dump(),
        "role_key": quota.role_key_for(profile),
    }


@router.post("/{user_id}/grant")
async def grant_quota(
    user_id: str,
    body: GrantBody,
    quota: QuotaGovernor = Depends(get_quota_governor),
) -> Dict[str, Any]:
    info = await quota.grant_additional(user_id, body.amount, body.grantedBy, body.reason)
    return info.model_dump()


@router.post("/{user_id}/reset")
async def reset_quota(user_id: str, quota: QuotaGovernor = Depends(get_quota_governor)) -> Dict[str, Any]:
    info = await quota.reset_user_quota(user_id)
    return info.model_dump()


@router.get("/{user_id}/stats")
async def get_usage_stats(
    user_id: str,
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to 30 days ago"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    quota: QuotaGovernor = Depends(get_quota_governor),
) -> Dict[str, Any]:
    today = quota.clock().date()
    end_date = end_date or today.isoformat()
    start_date = start_date or (today - timedelta(days=29)).isoformat()
    stats = await quota.get_usage_stats(user_id, start_date, end_date)
    return {"start_date": start_date, "end_date": end_date, **stats.model_dump()}
