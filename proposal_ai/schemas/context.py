from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from proposal_ai.schemas.session import AnalysisDepth, utcnow


class ContextOptions(BaseModel):
    include_project_structure: bool = True
    include_market_analysis: bool = True
    include_tech_trends: bool = True
    analysis_depth: AnalysisDepth = AnalysisDepth.STANDARD


class ArchitectureInfo(BaseModel):
    pattern: str = "unknown"
    modularity: float = 0.5


class CodeQuality(BaseModel):
    score: float = 0.5
    strengths: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)


class Scalability(BaseModel):
    score: float = 0.5
    bottlenecks: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class ProjectStructureAnalysis(BaseModel):
    summary: str = ""
    complexity: float = 0.5
    main_technologies: List[str] = Field(default_factory=list)
    architecture: ArchitectureInfo = Field(default_factory=ArchitectureInfo)
    code_quality: CodeQuality = Field(default_factory=CodeQuality)
    scalability: Scalability = Field(default_factory=Scalability)
    confidence: float = 0.0


class Competitor(BaseModel):
    name: str
    strength: float = 0.5


class MarketInsights(BaseModel):
    summary: str = ""
    market_size: str = "unknown"
    trend_score: float = 0.5
    competitors: List[Competitor] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    threats: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class TechAnalysis(BaseModel):
    summary: str = ""
    trend_score: float = 0.5
    adoption_rate: float = 0.5
    future_outlook: str = ""
    recommendations: List[str] = Field(default_factory=list)
    alternative_tech: List[str] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class ContextMetadata(BaseModel):
    last_updated: datetime = Field(default_factory=utcnow)
    data_source_count: int = 0
    total_confidence: float = 0.0
    processing_time_ms: float = 0.0


class EnrichedContext(BaseModel):
    session_id: str
    project_structure: Optional[ProjectStructureAnalysis] = None
    market_insights: Optional[MarketInsights] = None
    tech_analysis: Optional[TechAnalysis] = None
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)
