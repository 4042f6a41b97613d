"""
Completion API endpoint: one prompt in, one provider completion out
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from proposal_ai.services.completion_service import CompletionService
from proposal_ai.services.provider_adapter import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_P,
    CompletionRequest,
)
from proposal_ai.core.dependencies import get_completion_service

router = APIRouter()
logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    role: str = "user"
    content: str = ""


class CompletionBody(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None
    maxTokens: Optional[int] = None
    temperature: Optional[float] = None
    topP: Optional[float] = None
    userId: Optional[str] = None


def missing_parameters_response(required: List[str]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "Missing required parameters",
            "required": required,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.post("/completion")
async def create_completion(
    body: CompletionBody,
    service: CompletionService = Depends(get_completion_service),
) -> Dict[str, Any]:
    """
    Run a single completion against the chosen provider.
    Accepts either `prompt` or `messages`; the response carries the nested
    `data` block and the flat fields older clients read.
    """
    if not body.provider or not body.model or not (body.prompt or body.messages):
        logger.error(
            f"[COMPLETION] Missing parameters: provider={bool(body.provider)} "
            f"model={bool(body.model)} prompt={bool(body.prompt)} messages={bool(body.messages)}"
        )
        return missing_parameters_response(["provider", "model", "prompt | messages"])

    request = CompletionRequest(
        model=body.model,
        prompt=body.prompt,
        messages=[m.model_dump() for m in body.messages] if body.messages else None,
        max_tokens=body.maxTokens or DEFAULT_MAX_TOKENS,
        temperature=body.temperature if body.temperature is not None else DEFAULT_TEMPERATURE,
        top_p=body.topP if body.topP is not None else DEFAULT_TOP_P,
    )

    outcome = await service.complete(body.provider, request, user_id=body.userId)
    return outcome.to_legacy_dict()
