"""
Main API router
"""
from fastapi import APIRouter

from proposal_ai.api.endpoints import completion, questions, quota, sessions

api_router = APIRouter()

api_router.include_router(completion.router, tags=["completion"])
api_router.include_router(questions.router, tags=["questions"])
api_router.include_router(quota.router, prefix="/quota", tags=["quota"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
