"""
Context Cache
Per-session enriched context (project structure, market insights, tech trends)
reused across analysis stages.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging
import time

from proposal_ai.core.exceptions import ValidationError
from proposal_ai.schemas.context import (
    ArchitectureInfo,
    CodeQuality,
    Competitor,
    ContextMetadata,
    ContextOptions,
    EnrichedContext,
    MarketInsights,
    ProjectStructureAnalysis,
    Scalability,
    TechAnalysis,
)
from proposal_ai.schemas.session import AnalysisDepth, utcnow

logger = logging.getLogger(__name__)

CONTEXT_PARTS = ("project_structure", "market_insights", "tech_analysis")


class ContextAnalyzer(ABC):
    """Produces the three context sub-analyses for a session"""

    @abstractmethod
    async def analyze_project_structure(
        self, session_id: str, options: ContextOptions, project: Dict[str, Any], documents: List[Dict[str, Any]]
    ) -> ProjectStructureAnalysis:
        pass

    @abstractmethod
    async def analyze_market(
        self, session_id: str, options: ContextOptions, project: Dict[str, Any], documents: List[Dict[str, Any]]
    ) -> MarketInsights:
        pass

    @abstractmethod
    async def analyze_tech_trends(
        self, session_id: str, options: ContextOptions, project: Dict[str, Any], documents: List[Dict[str, Any]]
    ) -> TechAnalysis:
        pass


# Keyword tables for the offline analyzer
TECH_KEYWORDS: Dict[str, str] = {
    "react": "React",
    "next.js": "Next.js",
    "vue": "Vue",
    "angular": "Angular",
    "node": "Node.js",
    "python": "Python",
    "fastapi": "FastAPI",
    "django": "Django",
    "java": "Java",
    "spring": "Spring",
    "kotlin": "Kotlin",
    "swift": "Swift",
    "flutter": "Flutter",
    "postgres": "PostgreSQL",
    "mysql": "MySQL",
    "mongodb": "MongoDB",
    "redis": "Redis",
    "kafka": "Kafka",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "aws": "AWS",
    "azure": "Azure",
    "gcp": "Google Cloud",
    "machine learning": "Machine Learning",
    "llm": "LLM",
    "blockchain": "Blockchain",
}

HOT_TECH = {"LLM", "Machine Learning", "Kubernetes", "Next.js", "FastAPI", "Flutter"}
DECLINING_TECH = {"Angular", "MySQL", "Blockchain"}

INDUSTRY_MARKETS: Dict[str, Dict[str, Any]] = {
    "finance": {"size": "large", "trend": 0.65, "competitors": ["Incumbent banks", "Fintech startups"]},
    "healthcare": {"size": "large", "trend": 0.7, "competitors": ["EHR vendors", "Digital health startups"]},
    "education": {"size": "medium", "trend": 0.6, "competitors": ["LMS vendors", "EdTech platforms"]},
    "retail": {"size": "large", "trend": 0.5, "competitors": ["Marketplace platforms", "D2C brands"]},
    "manufacturing": {"size": "large", "trend": 0.45, "competitors": ["ERP vendors", "System integrators"]},
    "public": {"size": "medium", "trend": 0.4, "competitors": ["System integrators", "Consultancies"]},
}

DEPTH_CONFIDENCE_BONUS = {
    AnalysisDepth.QUICK: 0.0,
    AnalysisDepth.STANDARD: 0.05,
    AnalysisDepth.DEEP: 0.1,
    AnalysisDepth.COMPREHENSIVE: 0.15,
}


def _corpus(project: Dict[str, Any], documents: List[Dict[str, Any]]) -> str:
    parts = [str(project.get(k) or "") for k in ("name", "description", "industry")]
    for doc in documents:
        parts.extend(str(doc.get(k) or "") for k in ("name", "summary", "content"))
    return " ".join(parts).lower()


def _detect_technologies(text: str) -> List[str]:
    found = []
    for keyword, label in TECH_KEYWORDS.items():
        if keyword in text and label not in found:
            found.append(label)
    return found


class ProjectContextAnalyzer(ContextAnalyzer):
    """Deterministic analyzer over the project record and its documents. Performs no I/O."""

    async def analyze_project_structure(self, session_id, options, project, documents):
        text = _corpus(project, documents)
        technologies = _detect_technologies(text)
        bonus = DEPTH_CONFIDENCE_BONUS.get(options.analysis_depth, 0.0)

        complexity = min(1.0, 0.2 + 0.08 * len(technologies) + 0.05 * len(documents))
        if "microservice" in text:
            pattern = "microservices"
        elif "serverless" in text:
            pattern = "serverless"
        elif technologies:
            pattern = "layered"
        else:
            pattern = "unknown"

        return ProjectStructureAnalysis(
            summary=f"{len(documents)} documents describe a {pattern} solution"
                    + (f" using {', '.join(technologies[:3])}" if technologies else ""),
            complexity=round(complexity, 2),
            main_technologies=technologies,
            architecture=ArchitectureInfo(pattern=pattern, modularity=0.7 if pattern == "microservices" else 0.5),
            code_quality=CodeQuality(score=0.5),
            scalability=Scalability(
                score=0.7 if pattern in ("microservices", "serverless") else 0.5,
                bottlenecks=["Single database"] if "postgres" in text or "mysql" in text else [],
            ),
            confidence=round(min(0.9, 0.35 + 0.1 * min(len(documents), 4) + bonus), 2),
        )

    async def analyze_market(self, session_id, options, project, documents):
        industry = str(project.get("industry") or "").lower()
        profile = next((v for k, v in INDUSTRY_MARKETS.items() if k in industry), None)
        bonus = DEPTH_CONFIDENCE_BONUS.get(options.analysis_depth, 0.0)

        if profile is None:
            return MarketInsights(
                summary="No industry information available",
                confidence=round(0.3 + bonus, 2),
            )

        trend = profile["trend"]
        return MarketInsights(
            summary=f"{industry.title()} market with a {profile['size']} addressable size",
            market_size=profile["size"],
            trend_score=trend,
            competitors=[Competitor(name=name, strength=0.6) for name in profile["competitors"]],
            opportunities=["Digital transformation budgets"] if trend >= 0.5 else [],
            threats=["Price pressure from incumbents"],
            confidence=round(min(0.9, 0.55 + bonus), 2),
        )

    async def analyze_tech_trends(self, session_id, options, project, documents):
        technologies = _detect_technologies(_corpus(project, documents))
        bonus = DEPTH_CONFIDENCE_BONUS.get(options.analysis_depth, 0.0)
        if not technologies:
            return TechAnalysis(
                summary="No technology stack identified",
                confidence=round(0.3 + bonus, 2),
            )

        hot = [t for t in technologies if t in HOT_TECH]
        declining = [t for t in technologies if t in DECLINING_TECH]
        trend = 0.5 + 0.1 * len(hot) - 0.1 * len(declining)
        trend = max(0.0, min(1.0, trend))
        return TechAnalysis(
            summary=f"Stack of {len(technologies)} identified technologies",
            trend_score=round(trend, 2),
            adoption_rate=round(min(1.0, 0.4 + 0.05 * len(technologies)), 2),
            future_outlook="positive" if trend >= 0.5 else "cautious",
            recommendations=[f"Keep {t} as a core skill" for t in hot[:3]],
            alternative_tech=[],
            risk_factors=[f"{t} adoption is declining" for t in declining],
            confidence=round(min(0.9, 0.5 + 0.05 * len(technologies) + bonus), 2),
        )


class ContextCache:
    """
    Session-keyed cache of EnrichedContext.

    Entries never expire unless ttl_seconds is set; the cache is bounded by
    max_size and evicts the entry with the oldest last_updated when full.
    """

    def __init__(
        self,
        analyzer: Optional[ContextAnalyzer] = None,
        max_size: int = 100,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.analyzer = analyzer or ProjectContextAnalyzer()
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.clock = clock or utcnow
        self._entries: "OrderedDict[str, EnrichedContext]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._generation_times: List[float] = []

    def _is_expired(self, context: EnrichedContext) -> bool:
        if self.ttl_seconds is None:
            return False
        age = (self.clock() - context.metadata.last_updated).total_seconds()
        return age > self.ttl_seconds

    def _store(self, session_id: str, context: EnrichedContext):
        if session_id not in self._entries and len(self._entries) >= self.max_size:
            oldest = min(self._entries, key=lambda k: self._entries[k].metadata.last_updated)
            del self._entries[oldest]
            logger.info(f"[CONTEXT_CACHE] Evicted oldest entry {oldest}")
        self._entries[session_id] = context

    async def get_or_update(
        self,
        session_id: str,
        options: Optional[ContextOptions] = None,
        force_refresh: bool = False,
        project: Optional[Dict[str, Any]] = None,
        documents: Optional[List[Dict[str, Any]]] = None,
    ) -> EnrichedContext:
        cached = self._entries.get(session_id)
        if cached is not None and not force_refresh and not self._is_expired(cached):
            self._hits += 1
            logger.debug(f"[CONTEXT_CACHE] Hit for session {session_id}")
            return cached

        self._misses += 1
        context = await self._build(session_id, options or ContextOptions(), project or {}, documents or [])
        self._store(session_id, context)
        return context

    async def _build(
        self,
        session_id: str,
        options: ContextOptions,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
    ) -> EnrichedContext:
        started = time.perf_counter()
        logger.info(f"[CONTEXT_CACHE] Building context for session {session_id}")

        jobs = {}
        if options.include_project_structure:
            jobs["project_structure"] = self.analyzer.analyze_project_structure(session_id, options, project, documents)
        if options.include_market_analysis:
            jobs["market_insights"] = self.analyzer.analyze_market(session_id, options, project, documents)
        if options.include_tech_trends:
            jobs["tech_analysis"] = self.analyzer.analyze_tech_trends(session_id, options, project, documents)

        results = await asyncio.gather(*jobs.values(), return_exceptions=True)
        parts: Dict[str, Any] = {}
        for name, result in zip(jobs.keys(), results):
            if isinstance(result, Exception):
                logger.warning(f"[CONTEXT_CACHE] {name} analysis failed for {session_id}: {result}")
                continue
            parts[name] = result

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._generation_times.append(elapsed_ms)
        context = EnrichedContext(session_id=session_id, **parts)
        context.metadata = self._metadata_for(context, elapsed_ms)
        return context

    def _metadata_for(self, context: EnrichedContext, elapsed_ms: float) -> ContextMetadata:
        confidences = [
            getattr(context, part).confidence
            for part in CONTEXT_PARTS
            if getattr(context, part) is not None
        ]
        return ContextMetadata(
            last_updated=self.clock(),
            data_source_count=len(confidences),
            total_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            processing_time_ms=elapsed_ms,
        )

    def invalidate(self, session_id: str) -> bool:
        removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.info(f"[CONTEXT_CACHE] Invalidated session {session_id}")
        return removed

    async def invalidate_part(
        self,
        session_id: str,
        part: str,
        options: Optional[ContextOptions] = None,
        project: Optional[Dict[str, Any]] = None,
        documents: Optional[List[Dict[str, Any]]] = None,
    ) -> EnrichedContext:
        """Recompute one sub-analysis and merge it into the cached entry"""
        if part not in CONTEXT_PARTS:
            raise ValidationError(f"Unknown context part '{part}'", field="part")

        options = options or ContextOptions()
        current = self._entries.get(session_id)
        if current is None:
            return await self.get_or_update(session_id, options, True, project, documents)

        analyze = {
            "project_structure": self.analyzer.analyze_project_structure,
            "market_insights": self.analyzer.analyze_market,
            "tech_analysis": self.analyzer.analyze_tech_trends,
        }[part]

        started = time.perf_counter()
        value = await analyze(session_id, options, project or {}, documents or [])
        elapsed_ms = (time.perf_counter() - started) * 1000

        merged = current.model_copy(update={part: value})
        merged.metadata = self._metadata_for(merged, elapsed_ms)
        self._store(session_id, merged)
        logger.info(f"[CONTEXT_CACHE] Refreshed {part} for session {session_id}")
        return merged

    def clear_all(self):
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._generation_times.clear()
        logger.info("[CONTEXT_CACHE] Cleared all entries")

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "average_generation_time_ms": (
                sum(self._generation_times) / len(self._generation_times) if self._generation_times else 0.0
            ),
            "size": len(self._entries),
        }

    def get_cache_status(self, session_id: str) -> Dict[str, Any]:
        context = self._entries.get(session_id)
        if context is None:
            return {"cached": False}
        return {
            "cached": True,
            "expired": self._is_expired(context),
            "last_updated": context.metadata.last_updated.isoformat(),
            "data_source_count": context.metadata.data_source_count,
            "total_confidence": context.metadata.total_confidence,
        }

    async def preload(self, session_ids: List[str], options: Optional[ContextOptions] = None) -> int:
        """Warm the cache for several sessions; returns how many entries were built"""
        missing = [sid for sid in session_ids if sid not in self._entries]
        await asyncio.gather(*(self.get_or_update(sid, options) for sid in missing))
        logger.info(f"[CONTEXT_CACHE] Preloaded {len(missing)} sessions")
        return len(missing)

    @staticmethod
    def validate_context(context: EnrichedContext) -> Dict[str, Any]:
        issues: List[str] = []
        recommendations: List[str] = []

        if context.metadata.data_source_count == 0:
            issues.append("No context sources available")
            recommendations.append("Upload project documents or provide project details")

        if context.metadata.total_confidence < 0.5:
            issues.append("Overall context confidence is low")
            recommendations.append("Add more detailed documents to improve the analysis")

        labels = {
            "project_structure": "Project structure",
            "market_insights": "Market insights",
            "tech_analysis": "Technology analysis",
        }
        for part in CONTEXT_PARTS:
            value = getattr(context, part)
            if value is not None and value.confidence < 0.4:
                issues.append(f"{labels[part]} confidence is low")

        return {
            "is_valid": not issues,
            "issues": issues,
            "recommendations": recommendations,
        }

    @staticmethod
    def generate_context_summary(context: EnrichedContext) -> str:
        parts = []
        if context.project_structure is not None:
            parts.append(f"project complexity {round(context.project_structure.complexity * 100)}%")
        if context.market_insights is not None:
            parts.append(f"market trend score {round(context.market_insights.trend_score * 100)}%")
        if context.tech_analysis is not None:
            parts.append(f"tech adoption {round(context.tech_analysis.adoption_rate * 100)}%")

        if not parts:
            return "Basic analysis complete"

        confidence = round(context.metadata.total_confidence * 100)
        return (
            f"{context.metadata.data_source_count} sources analyzed: "
            f"{', '.join(parts)} (confidence {confidence}%)"
        )
