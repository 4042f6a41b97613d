"""
Analysis session endpoints: setup, analysis, questions, answers and report
"""

from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from proposal_ai.core.dependencies import get_session_machine
from proposal_ai.schemas.session import AnalysisDepth, AnalysisStep, AnswerValue
from proposal_ai.services.session_state_machine import AnalysisSessionStateMachine

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateSessionBody(BaseModel):
    project_id: str
    provider: Optional[str] = None
    model: Optional[str] = None
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    mcp_config: Dict[str, Any] = Field(default_factory=dict)


class ConfigureBody(BaseModel):
    provider: str
    model: str
    depth: Optional[AnalysisDepth] = None
    mcp_config: Optional[Dict[str, Any]] = None


class ProjectPayload(BaseModel):
    project: Dict[str, Any] = Field(default_factory=dict)
    documents: List[Dict[str, Any]] = Field(default_factory=list)
    user_id: Optional[str] = None


class QuestionsPayload(ProjectPayload):
    force: bool = False
    request_type: Optional[str] = None
    document_analyses: List[Dict[str, Any]] = Field(default_factory=list)


class AnswerBody(BaseModel):
    value: AnswerValue = None
    confidence: int = Field(5, ge=1, le=10)
    is_draft: bool = False
    notes: str = ""
    attachments: List[str] = Field(default_factory=list)


class ReportBody(BaseModel):
    user_id: Optional[str] = None


class AdvanceBody(BaseModel):
    target: AnalysisStep


@router.post("")
async def create_session(
    body: CreateSessionBody,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    session = await machine.create_session(
        body.project_id, body.provider, body.model, body.depth, body.mcp_config
    )
    return session.model_dump(mode="json")


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    session = await machine.get_session(session_id)
    questions = await machine.get_questions(session_id)
    answers = await machine.get_answers(session_id)
    result = await machine.get_result(session_id)
    report = await machine.get_report(session_id)
    return {
        "session": session.model_dump(mode="json"),
        "questions": [q.model_dump(mode="json") for q in questions],
        "answers": [a.model_dump(mode="json") for a in answers],
        "analysis": result.model_dump(mode="json") if result else None,
        "report": report.model_dump(mode="json") if report else None,
    }


@router.put("/{session_id}/config")
async def configure_session(
    session_id: str,
    body: ConfigureBody,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    session = await machine.configure(session_id, body.provider, body.model, body.depth, body.mcp_config)
    return session.model_dump(mode="json")


@router.post("/{session_id}/advance")
async def advance_session(
    session_id: str,
    body: AdvanceBody,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    session = await machine.advance(session_id, body.target)
    return session.model_dump(mode="json")


@router.post("/{session_id}/analysis")
async def run_analysis(
    session_id: str,
    body: ProjectPayload,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    result = await machine.run_analysis(session_id, body.project, body.documents, body.user_id)
    session = await machine.get_session(session_id)
    return {
        "analysis": result.model_dump(mode="json"),
        "session": session.model_dump(mode="json"),
    }


@router.post("/{session_id}/questions")
async def generate_session_questions(
    session_id: str,
    body: QuestionsPayload,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    questions = await machine.generate_questions(
        session_id,
        body.project,
        body.documents,
        user_id=body.user_id,
        force=body.force,
        request_type=body.request_type,
        document_analyses=body.document_analyses,
    )
    return {"questions": [q.model_dump(mode="json") for q in questions]}


@router.put("/{session_id}/answers/{question_id}")
async def save_answer(
    session_id: str,
    question_id: str,
    body: AnswerBody,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    answer = await machine.save_answer(
        session_id,
        question_id,
        body.value,
        confidence=body.confidence,
        is_draft=body.is_draft,
        notes=body.notes,
        attachments=body.attachments,
    )
    return answer.model_dump(mode="json")


@router.post("/{session_id}/report")
async def generate_report(
    session_id: str,
    body: ReportBody,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    report = await machine.generate_report(session_id, body.user_id)
    session = await machine.get_session(session_id)
    return {
        "report": report.model_dump(mode="json"),
        "session": session.model_dump(mode="json"),
    }


@router.post("/{session_id}/restart")
async def restart_session(
    session_id: str,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    session = await machine.restart(session_id)
    return session.model_dump(mode="json")


@router.post("/{session_id}/archive")
async def archive_session(
    session_id: str,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    session = await machine.archive(session_id)
    return session.model_dump(mode="json")


@router.get("/{session_id}/progress")
async def get_progress(
    session_id: str,
    machine: AnalysisSessionStateMachine = Depends(get_session_machine),
) -> Dict[str, Any]:
    progress = await machine.calculate_progress(session_id)
    session = await machine.get_session(session_id)
    return {
        "session_id": session_id,
        "current_step": session.current_step.value,
        "status": session.status.value,
        "progress": progress,
    }
