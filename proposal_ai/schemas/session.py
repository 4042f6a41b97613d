from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStep(str, Enum):
    SETUP = "setup"
    ANALYSIS = "analysis"
    QUESTIONS = "questions"
    REPORT = "report"


STEP_ORDER: List[AnalysisStep] = [
    AnalysisStep.SETUP,
    AnalysisStep.ANALYSIS,
    AnalysisStep.QUESTIONS,
    AnalysisStep.REPORT,
]


class SessionStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisDepth(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"
    COMPREHENSIVE = "comprehensive"


QUESTION_TYPES = ("text", "textarea", "select", "multiselect", "number")
PRIORITIES = ("high", "medium", "low")
SEVERITIES = ("low", "medium", "high", "critical")

AnswerValue = Union[str, List[str], int, float, None]


class AnalysisSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_id: str
    current_step: AnalysisStep = AnalysisStep.SETUP
    status: SessionStatus = SessionStatus.IDLE
    provider: Optional[str] = None
    model: Optional[str] = None
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    mcp_config: Dict[str, Any] = Field(default_factory=dict)
    step_progress: Dict[str, float] = Field(default_factory=dict)
    last_error: Optional[str] = None
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def step_index(self) -> int:
        return STEP_ORDER.index(self.current_step)


class Question(BaseModel):
    id: str
    session_id: str
    step: AnalysisStep = AnalysisStep.QUESTIONS
    category: str = "General"
    text: str
    type: str = "textarea"
    options: Optional[List[str]] = None
    required: bool = False
    help_text: str = ""
    priority: str = "medium"
    confidence: float = 0.8
    source: str = "ai"
    order_index: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_ai_generated(self) -> bool:
        return "_ai_" in self.id


class Answer(BaseModel):
    id: str
    session_id: str
    question_id: str
    step: AnalysisStep = AnalysisStep.QUESTIONS
    value: AnswerValue = None
    confidence: int = Field(5, ge=1, le=10)
    is_draft: bool = False
    notes: str = ""
    attachments: List[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @staticmethod
    def key_for(session_id: str, question_id: str) -> str:
        return f"{session_id}:{question_id}"

    @property
    def is_filled(self) -> bool:
        """Whether the answer counts toward required questions"""
        if self.is_draft:
            return False
        value = self.value
        if value is None:
            return False
        if isinstance(value, bool):
            return True
        if isinstance(value, (int, float)):
            return True
        if isinstance(value, str):
            return bool(value.strip())
        return any(str(v).strip() for v in value)


class Risk(BaseModel):
    title: str = ""
    description: str = ""
    severity: str = "medium"
    probability: float = Field(50, ge=0, le=100)
    impact: float = Field(50, ge=0, le=100)
    mitigation: str = ""


class TimelinePhase(BaseModel):
    phase: str = ""
    duration: float = 0
    milestones: List[str] = Field(default_factory=list)


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


class AnalysisResult(BaseModel):
    session_id: str
    summary: str = ""
    key_findings: List[str] = Field(default_factory=list)
    risks: List[Risk] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    timeline: List[TimelinePhase] = Field(default_factory=list)
    confidence: float = 0.0
    parse_error: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_extracted(cls, session_id: str, data: Dict[str, Any], confidence: float = 0.0) -> "AnalysisResult":
        """Build a result from extractor output, tolerating missing or mistyped fields"""
        risks = []
        for raw in _dict_list(data.get("risks")):
            severity = str(raw.get("severity", "medium")).lower()
            risks.append(Risk(
                title=str(raw.get("title", "")),
                description=str(raw.get("description", "")),
                severity=severity if severity in SEVERITIES else "medium",
                probability=_clamp(raw.get("probability"), 0, 100, 50),
                impact=_clamp(raw.get("impact"), 0, 100, 50),
                mitigation=str(raw.get("mitigation", "")),
            ))

        timeline = []
        for raw in _dict_list(data.get("timeline")):
            timeline.append(TimelinePhase(
                phase=str(raw.get("phase", "")),
                duration=_clamp(raw.get("duration"), 0, float("inf"), 0),
                milestones=_str_list(raw.get("milestones")),
            ))

        return cls(
            session_id=session_id,
            summary=str(data.get("summary") or ""),
            key_findings=_str_list(data.get("keyFindings", data.get("key_findings"))),
            risks=risks,
            recommendations=_str_list(data.get("recommendations")),
            timeline=timeline,
            confidence=confidence,
            parse_error=bool(data.get("parse_error")),
        )


class AnalysisReport(BaseModel):
    session_id: str
    summary: str = ""
    executive_summary: str = ""
    key_insights: List[str] = Field(default_factory=list)
    risk_assessment: Dict[str, Any] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    baseline_data: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)
    parse_error: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_extracted(cls, session_id: str, data: Dict[str, Any]) -> "AnalysisReport":
        risk_assessment = data.get("riskAssessment", data.get("risk_assessment"))
        baseline = data.get("baselineData", data.get("baseline_data"))
        return cls(
            session_id=session_id,
            summary=str(data.get("summary") or ""),
            executive_summary=str(data.get("executiveSummary") or data.get("executive_summary") or ""),
            key_insights=_str_list(data.get("keyInsights", data.get("key_insights"))),
            risk_assessment=risk_assessment if isinstance(risk_assessment, dict) else {},
            recommendations=_str_list(data.get("recommendations")),
            baseline_data=baseline if isinstance(baseline, dict) else {},
            raw=data,
            parse_error=bool(data.get("parse_error")),
        )
