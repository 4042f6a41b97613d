"""
Question generation endpoint
"""

from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from proposal_ai.api.endpoints.completion import missing_parameters_response
from proposal_ai.core.dependencies import get_question_service
from proposal_ai.services.question_service import QuestionService

router = APIRouter()
logger = logging.getLogger(__name__)


class ProjectInfo(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None


class DocumentInfo(BaseModel):
    name: str = "document"
    summary: Optional[str] = None
    content: Optional[str] = None


class PreAnalysisData(BaseModel):
    hasPreAnalysis: bool = False
    report: Optional[Dict[str, Any]] = None
    documentAnalyses: List[Dict[str, Any]] = Field(default_factory=list)
    summary: str = ""


class QuestionContext(BaseModel):
    userId: Optional[str] = None
    sessionId: Optional[str] = None
    requestType: Optional[str] = None


class QuestionsBody(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    projectId: Optional[str] = None
    projectInfo: ProjectInfo = Field(default_factory=ProjectInfo)
    documents: List[DocumentInfo] = Field(default_factory=list)
    preAnalysisData: Optional[PreAnalysisData] = None
    context: Optional[QuestionContext] = None


@router.post("/questions")
async def generate_questions(
    body: QuestionsBody,
    service: QuestionService = Depends(get_question_service),
) -> Dict[str, Any]:
    """
    Generate project questions. Unusable model output or a failed provider call
    returns the default question set for the request type instead of an error.
    """
    if not body.provider or not body.model or not body.projectId:
        logger.error(f"[QUESTIONS] Missing parameters for project {body.projectId}")
        return missing_parameters_response(["provider", "model", "projectId"])

    context = body.context or QuestionContext()
    logger.info(
        f"[QUESTIONS] {body.provider}/{body.model} for project {body.projectId} "
        f"({len(body.documents)} documents, type={context.requestType or 'pre_analysis'})"
    )

    question_set = await service.generate(
        body.provider,
        body.model,
        body.projectInfo.model_dump(),
        [d.model_dump() for d in body.documents],
        pre_analysis=body.preAnalysisData.model_dump() if body.preAnalysisData else None,
        request_type=context.requestType,
        user_id=context.userId,
    )
    return question_set.to_response(body.projectId, body.model)
