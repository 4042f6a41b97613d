from proposal_ai.schemas.session import (
    AnalysisDepth,
    AnalysisReport,
    AnalysisResult,
    AnalysisSession,
    AnalysisStep,
    Answer,
    Question,
    SessionStatus,
    STEP_ORDER,
)
from proposal_ai.schemas.usage import (
    QuotaInfo,
    QuotaStatus,
    UsageRecord,
    UsageStats,
    UserProfile,
)
from proposal_ai.schemas.context import (
    ContextOptions,
    EnrichedContext,
    MarketInsights,
    ProjectStructureAnalysis,
    TechAnalysis,
)

__all__ = [
    "AnalysisDepth",
    "AnalysisReport",
    "AnalysisResult",
    "AnalysisSession",
    "AnalysisStep",
    "Answer",
    "Question",
    "SessionStatus",
    "STEP_ORDER",
    "QuotaInfo",
    "QuotaStatus",
    "UsageRecord",
    "UsageStats",
    "UserProfile",
    "ContextOptions",
    "EnrichedContext",
    "MarketInsights",
    "ProjectStructureAnalysis",
    "TechAnalysis",
]
