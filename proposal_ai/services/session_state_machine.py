"""
Analysis Session State Machine

A session moves linearly through setup -> analysis -> questions -> report.
The persisted (current_step, status) pair is the whole state; transitions are
checked by pure guard functions and re-applying a transition is harmless, so
no lock is taken. Only restart() moves a session backwards.

Stage operations (analysis, questions, report) each issue at most one provider
call. When a stage raises for any reason the session is marked failed, keeps
its step and artifacts, and the error is re-raised so the caller can retry.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from proposal_ai.abstractions.store import KeyValueStore
from proposal_ai.core.api_keys import SUPPORTED_PROVIDERS
from proposal_ai.core.exceptions import (
    ProposalAIException,
    ResourceNotFoundError,
    StageTransitionError,
    ValidationError,
)
from proposal_ai.schemas.context import ContextOptions
from proposal_ai.schemas.session import (
    STEP_ORDER,
    AnalysisDepth,
    AnalysisReport,
    AnalysisResult,
    AnalysisSession,
    AnalysisStep,
    Answer,
    AnswerValue,
    Question,
    SessionStatus,
    utcnow,
)
from proposal_ai.services.completion_service import CompletionService
from proposal_ai.services.context_cache import ContextCache
from proposal_ai.services.prompt_engine import DEPTH_MAX_TOKENS, PromptEngine
from proposal_ai.services.provider_adapter import CompletionRequest
from proposal_ai.services.question_service import QuestionService
from proposal_ai.services.response_extractor import extract

logger = logging.getLogger(__name__)

T = TypeVar("T")

SESSIONS_TABLE = "analysis_sessions"
QUESTIONS_TABLE = "questions"
ANSWERS_TABLE = "answers"
RESULTS_TABLE = "analysis_results"
REPORTS_TABLE = "analysis_reports"

AI_QUESTION_MARKER = "_ai_"
ANALYSIS_TEMPERATURE = 0.3
REPORT_TEMPERATURE = 0.5


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgressWeights:
    setup: float = 10
    analysis: float = 40
    questions: float = 30
    report: float = 20

    @classmethod
    def from_settings(cls, settings) -> "ProgressWeights":
        return cls(
            setup=settings.PROGRESS_WEIGHT_SETUP,
            analysis=settings.PROGRESS_WEIGHT_ANALYSIS,
            questions=settings.PROGRESS_WEIGHT_QUESTIONS,
            report=settings.PROGRESS_WEIGHT_REPORT,
        )

    def for_step(self, step: AnalysisStep) -> float:
        return getattr(self, AnalysisStep(step).value)

    @property
    def total(self) -> float:
        return self.setup + self.analysis + self.questions + self.report


@dataclass(frozen=True)
class RegenerationPolicy:
    """When to replace the questions already stored for a step"""
    regenerate_static_defaults: bool = True

    def should_regenerate(self, existing: List[Question], pre_analysis_available: bool, force: bool = False) -> bool:
        if force or not existing:
            return True
        if not self.regenerate_static_defaults:
            return False
        # Only default questions so far, and analysis data has since become available
        return pre_analysis_available and all(AI_QUESTION_MARKER not in q.id for q in existing)


def has_pre_analysis(
    result: Optional[AnalysisResult],
    report: Optional[AnalysisReport],
    document_analyses: Optional[List[Dict[str, Any]]] = None,
) -> bool:
    return (result is not None and not result.parse_error) or report is not None or bool(document_analyses)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def can_enter_analysis(session: AnalysisSession) -> bool:
    return bool(session.provider and session.model)


def can_enter_questions(result: Optional[AnalysisResult]) -> bool:
    return result is not None and not result.parse_error


def missing_required_answers(questions: List[Question], answers: List[Answer]) -> List[Question]:
    filled = {a.question_id for a in answers if a.is_filled}
    return [q for q in questions if q.required and q.id not in filled]


def can_enter_report(questions: List[Question], answers: List[Answer]) -> bool:
    return not missing_required_answers(questions, answers)


def answered_ratio(questions: List[Question], answers: List[Answer]) -> float:
    """Share of required questions answered, or of all questions when none are required"""
    pool = [q for q in questions if q.required] or questions
    if not pool:
        return 0.0
    filled = {a.question_id for a in answers if a.is_filled}
    return sum(1 for q in pool if q.id in filled) / len(pool)


def calculate_progress(
    session: AnalysisSession,
    questions: List[Question],
    answers: List[Answer],
    weights: ProgressWeights = ProgressWeights(),
) -> float:
    """Weighted completion percentage, one decimal, clamped to 0..100"""
    if session.current_step == AnalysisStep.REPORT and session.status == SessionStatus.COMPLETED:
        return 100.0

    index = session.step_index
    progress = sum(weights.for_step(step) for step in STEP_ORDER[:index])

    if session.status == SessionStatus.PROCESSING:
        partial = 0.5
    elif session.current_step == AnalysisStep.QUESTIONS:
        partial = answered_ratio(questions, answers)
    elif session.current_step == AnalysisStep.SETUP:
        partial = 1.0 if can_enter_analysis(session) else 0.0
    else:
        partial = 0.0
    progress += weights.for_step(session.current_step) * partial

    if weights.total:
        progress = progress * 100 / weights.total
    return round(max(0.0, min(100.0, progress)), 1)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class AnalysisSessionStateMachine:
    def __init__(
        self,
        store: KeyValueStore,
        completion_service: CompletionService,
        question_service: QuestionService,
        context_cache: ContextCache,
        prompt_engine: Optional[PromptEngine] = None,
        weights: Optional[ProgressWeights] = None,
        regeneration_policy: Optional[RegenerationPolicy] = None,
    ):
        self.store = store
        self.completion_service = completion_service
        self.question_service = question_service
        self.context_cache = context_cache
        self.prompt_engine = prompt_engine or PromptEngine()
        self.weights = weights or ProgressWeights()
        self.regeneration_policy = regeneration_policy or RegenerationPolicy()

    # -- persistence helpers ------------------------------------------------

    async def _save(self, session: AnalysisSession) -> AnalysisSession:
        session.updated_at = utcnow()
        await self.store.put(SESSIONS_TABLE, session.id, session.model_dump(mode="json"))
        return session

    async def get_session(self, session_id: str) -> AnalysisSession:
        row = await self.store.get(SESSIONS_TABLE, session_id)
        if not row:
            raise ResourceNotFoundError("AnalysisSession", session_id)
        return AnalysisSession(**row)

    async def get_questions(self, session_id: str, step: AnalysisStep = AnalysisStep.QUESTIONS) -> List[Question]:
        rows = await self.store.query(
            QUESTIONS_TABLE, filters={"session_id": session_id, "step": AnalysisStep(step).value}, order_by="order_index"
        )
        return [Question(**row) for row in rows]

    async def get_answers(self, session_id: str, step: AnalysisStep = AnalysisStep.QUESTIONS) -> List[Answer]:
        rows = await self.store.query(
            ANSWERS_TABLE, filters={"session_id": session_id, "step": AnalysisStep(step).value}
        )
        return [Answer(**row) for row in rows]

    async def get_result(self, session_id: str) -> Optional[AnalysisResult]:
        row = await self.store.get(RESULTS_TABLE, session_id)
        return AnalysisResult(**row) if row else None

    async def get_report(self, session_id: str) -> Optional[AnalysisReport]:
        row = await self.store.get(REPORTS_TABLE, session_id)
        return AnalysisReport(**row) if row else None

    async def _fail(self, session: AnalysisSession, error: Exception) -> AnalysisSession:
        message = error.message if isinstance(error, ProposalAIException) else str(error)
        session.status = SessionStatus.FAILED
        session.last_error = message
        logger.error(f"[SESSION] {session.id} failed at {session.current_step.value}: {message}")
        return await self._save(session)

    async def _guarded(self, session: AnalysisSession, stage: Awaitable[T]) -> T:
        """Await a stage body; any failure marks the session failed and is re-raised"""
        try:
            return await stage
        except Exception as e:
            await self._fail(session, e)
            raise

    # -- lifecycle ------------------------------------------------------------

    async def create_session(
        self,
        project_id: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        depth: AnalysisDepth = AnalysisDepth.STANDARD,
        mcp_config: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> AnalysisSession:
        if not project_id:
            raise ValidationError("project_id is required", field="project_id")
        if provider is not None:
            self._validate_provider(provider)

        session = AnalysisSession(
            id=session_id or str(uuid.uuid4()),
            project_id=project_id,
            provider=provider,
            model=model,
            depth=depth,
            mcp_config=mcp_config or {},
        )
        logger.info(f"[SESSION] Created {session.id} for project {project_id}")
        return await self._save(session)

    @staticmethod
    def _validate_provider(provider: str):
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(
                f"Unsupported provider: {provider}. Expected one of {', '.join(SUPPORTED_PROVIDERS)}",
                field="provider",
            )

    async def configure(
        self,
        session_id: str,
        provider: str,
        model: str,
        depth: Optional[AnalysisDepth] = None,
        mcp_config: Optional[Dict[str, Any]] = None,
    ) -> AnalysisSession:
        self._validate_provider(provider)
        if not model:
            raise ValidationError("model is required", field="model")

        session = await self.get_session(session_id)
        session.provider = provider
        session.model = model
        if depth is not None:
            session.depth = AnalysisDepth(depth)
        if mcp_config is not None:
            session.mcp_config = mcp_config
        session.step_progress[AnalysisStep.SETUP.value] = 100.0
        return await self._save(session)

    async def advance(self, session_id: str, target: AnalysisStep) -> AnalysisSession:
        """Guarded forward move by exactly one step; a no-op when already at target"""
        target = AnalysisStep(target)
        session = await self.get_session(session_id)
        current = session.current_step

        if current == target:
            return session

        current_index = STEP_ORDER.index(current)
        target_index = STEP_ORDER.index(target)
        if target_index < current_index:
            raise StageTransitionError(current.value, target.value, "steps only move forward; use restart")
        if target_index > current_index + 1:
            raise StageTransitionError(current.value, target.value, "steps must be completed one at a time")

        await self._check_guard(session, target)
        session.current_step = target
        session.status = SessionStatus.IDLE
        session.last_error = None
        logger.info(f"[SESSION] {session_id}: {current.value} -> {target.value}")
        return await self._save(session)

    async def _check_guard(self, session: AnalysisSession, target: AnalysisStep):
        current = session.current_step.value
        if target == AnalysisStep.ANALYSIS:
            if not can_enter_analysis(session):
                raise StageTransitionError(current, target.value, "provider and model must be selected")
        elif target == AnalysisStep.QUESTIONS:
            if not can_enter_questions(await self.get_result(session.id)):
                raise StageTransitionError(current, target.value, "a parsed analysis result is required")
        elif target == AnalysisStep.REPORT:
            questions = await self.get_questions(session.id)
            answers = await self.get_answers(session.id)
            missing = missing_required_answers(questions, answers)
            if missing:
                raise StageTransitionError(
                    current,
                    target.value,
                    f"{len(missing)} required question(s) are unanswered",
                    details={"missingQuestionIds": [q.id for q in missing]},
                )

    async def _enter(self, session: AnalysisSession, target: AnalysisStep) -> AnalysisSession:
        """Move forward to target when the session is exactly one step behind it"""
        if session.step_index + 1 == STEP_ORDER.index(target):
            await self._check_guard(session, target)
            session.current_step = target
        return session

    async def restart(self, session_id: str) -> AnalysisSession:
        session = await self.get_session(session_id)
        session.current_step = AnalysisStep.SETUP
        session.status = SessionStatus.IDLE
        session.step_progress = {}
        session.last_error = None
        self.context_cache.invalidate(session_id)
        logger.info(f"[SESSION] {session_id} restarted")
        return await self._save(session)

    async def archive(self, session_id: str) -> AnalysisSession:
        session = await self.get_session(session_id)
        session.archived = True
        logger.info(f"[SESSION] {session_id} archived")
        return await self._save(session)

    async def calculate_progress(self, session_id: str) -> float:
        session = await self.get_session(session_id)
        questions = await self.get_questions(session_id)
        answers = await self.get_answers(session_id)
        return calculate_progress(session, questions, answers, self.weights)

    # -- stages ---------------------------------------------------------------

    async def run_analysis(
        self,
        session_id: str,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> AnalysisResult:
        session = await self.get_session(session_id)
        if session.current_step == AnalysisStep.SETUP:
            await self._enter(session, AnalysisStep.ANALYSIS)
        elif not can_enter_analysis(session):
            raise StageTransitionError(session.current_step.value, "analysis", "provider and model must be selected")

        session.status = SessionStatus.PROCESSING
        await self._save(session)
        return await self._guarded(session, self._analysis_stage(session, project, documents, user_id))

    async def _analysis_stage(
        self,
        session: AnalysisSession,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        user_id: Optional[str],
    ) -> AnalysisResult:
        session_id = session.id
        context = await self.context_cache.get_or_update(
            session_id,
            ContextOptions(analysis_depth=session.depth),
            project=project,
            documents=documents,
        )
        base_prompt = self.prompt_engine.build_analysis_prompt(project, documents, session.depth)
        enhanced = self.prompt_engine.build_context_aware_prompt(base_prompt, context, "comprehensive")
        request = CompletionRequest(
            model=session.model,
            messages=[
                {"role": "system", "content": enhanced.system_prompt},
                {"role": "user", "content": enhanced.user_prompt},
            ],
            max_tokens=DEPTH_MAX_TOKENS[session.depth],
            temperature=ANALYSIS_TEMPERATURE,
        )
        outcome = await self.completion_service.complete(
            session.provider, request, user_id=user_id, operation="analysis", endpoint="/api/ai/analysis"
        )

        result = AnalysisResult.from_extracted(
            session_id, extract(outcome.completion.content), confidence=context.metadata.total_confidence
        )
        if result.parse_error:
            # The previous result, if any, stays in place
            await self._fail(session, ValueError("analysis output could not be parsed"))
            return result

        await self.store.put(RESULTS_TABLE, session_id, result.model_dump(mode="json"))
        session.step_progress[AnalysisStep.ANALYSIS.value] = 100.0
        session.status = SessionStatus.COMPLETED
        session.last_error = None
        if session.current_step == AnalysisStep.ANALYSIS:
            session.current_step = AnalysisStep.QUESTIONS
        await self._save(session)
        logger.info(f"[SESSION] {session_id} analysis stored ({len(result.key_findings)} findings)")
        return result

    async def generate_questions(
        self,
        session_id: str,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        user_id: Optional[str] = None,
        force: bool = False,
        request_type: Optional[str] = None,
        document_analyses: Optional[List[Dict[str, Any]]] = None,
    ) -> List[Question]:
        session = await self.get_session(session_id)
        if session.step_index < STEP_ORDER.index(AnalysisStep.QUESTIONS):
            await self._enter(session, AnalysisStep.QUESTIONS)
            if session.current_step != AnalysisStep.QUESTIONS:
                raise StageTransitionError(session.current_step.value, "questions", "analysis has not been run")

        existing = await self.get_questions(session_id)
        result = await self.get_result(session_id)
        report = await self.get_report(session_id)
        pre_analysis_available = has_pre_analysis(result, report, document_analyses)

        if not self.regeneration_policy.should_regenerate(existing, pre_analysis_available, force):
            logger.info(f"[SESSION] {session_id} keeps {len(existing)} existing questions")
            await self._save(session)
            return existing

        session.status = SessionStatus.PROCESSING
        await self._save(session)
        return await self._guarded(session, self._questions_stage(
            session, project, documents, existing, result, pre_analysis_available,
            user_id, request_type, document_analyses,
        ))

    async def _questions_stage(
        self,
        session: AnalysisSession,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        existing: List[Question],
        result: Optional[AnalysisResult],
        pre_analysis_available: bool,
        user_id: Optional[str],
        request_type: Optional[str],
        document_analyses: Optional[List[Dict[str, Any]]],
    ) -> List[Question]:
        session_id = session.id
        pre_analysis = {
            "hasPreAnalysis": pre_analysis_available,
            "report": {
                "summary": result.summary,
                "key_findings": result.key_findings,
                "recommendations": result.recommendations,
            } if result is not None and not result.parse_error else None,
            "documentAnalyses": document_analyses or [],
        }
        question_set = await self.question_service.generate(
            session.provider,
            session.model,
            project,
            documents,
            pre_analysis=pre_analysis,
            request_type=request_type,
            user_id=user_id,
            depth=session.depth,
            fallback_on_provider_error=False,
        )

        if existing:
            # Answers go first so none is left pointing at a removed question
            removed_answers = await self.store.delete_where(
                ANSWERS_TABLE, {"session_id": session_id, "step": AnalysisStep.QUESTIONS.value}
            )
            removed_questions = await self.store.delete_where(
                QUESTIONS_TABLE, {"session_id": session_id, "step": AnalysisStep.QUESTIONS.value}
            )
            logger.info(
                f"[SESSION] {session_id} regenerating: removed {removed_questions} questions "
                f"and {removed_answers} answers"
            )

        questions = []
        for index, raw in enumerate(question_set.questions):
            if question_set.source == "ai":
                question_id = f"{session_id}{AI_QUESTION_MARKER}{index}_{uuid.uuid4().hex[:8]}"
            else:
                question_id = f"{session_id}_default_{index}"
            question = Question(
                id=question_id,
                session_id=session_id,
                category=raw["category"],
                text=raw["text"],
                type=raw["type"],
                options=raw.get("options"),
                required=raw["required"],
                help_text=raw.get("helpText", ""),
                priority=raw["priority"],
                confidence=raw["confidence"],
                source=question_set.source,
                order_index=index,
            )
            await self.store.put(QUESTIONS_TABLE, question.id, question.model_dump(mode="json"))
            questions.append(question)

        session.status = SessionStatus.COMPLETED
        session.last_error = None
        session.step_progress[AnalysisStep.QUESTIONS.value] = 0.0
        await self._save(session)
        logger.info(f"[SESSION] {session_id} stored {len(questions)} {question_set.source} questions")
        return questions

    async def save_answer(
        self,
        session_id: str,
        question_id: str,
        value: AnswerValue,
        confidence: int = 5,
        is_draft: bool = False,
        notes: str = "",
        attachments: Optional[List[str]] = None,
    ) -> Answer:
        """Last write wins for a (session, question) pair"""
        session = await self.get_session(session_id)
        row = await self.store.get(QUESTIONS_TABLE, question_id)
        if not row or row.get("session_id") != session_id:
            raise ResourceNotFoundError("Question", question_id)
        question = Question(**row)

        key = Answer.key_for(session_id, question_id)
        answer = Answer(
            id=key,
            session_id=session_id,
            question_id=question_id,
            step=question.step,
            value=value,
            confidence=confidence,
            is_draft=is_draft,
            notes=notes,
            attachments=attachments or [],
        )
        await self.store.put(ANSWERS_TABLE, key, answer.model_dump(mode="json"))

        questions = await self.get_questions(session_id, question.step)
        answers = await self.get_answers(session_id, question.step)
        session.step_progress[question.step.value] = round(answered_ratio(questions, answers) * 100, 1)
        await self._save(session)
        return answer

    async def generate_report(self, session_id: str, user_id: Optional[str] = None) -> AnalysisReport:
        session = await self.get_session(session_id)
        if session.step_index < STEP_ORDER.index(AnalysisStep.QUESTIONS):
            raise StageTransitionError(session.current_step.value, "report", "questions have not been generated")
        if session.current_step == AnalysisStep.QUESTIONS:
            await self._check_guard(session, AnalysisStep.REPORT)

        result = await self.get_result(session_id)
        questions = await self.get_questions(session_id)
        answers = await self.get_answers(session_id)

        session.status = SessionStatus.PROCESSING
        await self._save(session)
        return await self._guarded(session, self._report_stage(session, result, questions, answers, user_id))

    async def _report_stage(
        self,
        session: AnalysisSession,
        result: Optional[AnalysisResult],
        questions: List[Question],
        answers: List[Answer],
        user_id: Optional[str],
    ) -> AnalysisReport:
        session_id = session.id
        request = CompletionRequest(
            model=session.model,
            prompt=self.prompt_engine.build_report_prompt(result, questions, answers),
            max_tokens=DEPTH_MAX_TOKENS[session.depth],
            temperature=REPORT_TEMPERATURE,
        )
        outcome = await self.completion_service.complete(
            session.provider, request, user_id=user_id, operation="report", endpoint="/api/ai/report"
        )

        report = AnalysisReport.from_extracted(session_id, extract(outcome.completion.content))
        if report.parse_error:
            await self._fail(session, ValueError("report output could not be parsed"))
            return report

        await self.store.put(REPORTS_TABLE, session_id, report.model_dump(mode="json"))
        session.current_step = AnalysisStep.REPORT
        session.status = SessionStatus.COMPLETED
        session.last_error = None
        session.step_progress[AnalysisStep.REPORT.value] = 100.0
        await self._save(session)
        logger.info(f"[SESSION] {session_id} report stored")
        return report
