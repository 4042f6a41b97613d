"""
Tests for the session context cache
"""

import pytest

from conftest import FixedClock
from proposal_ai.core.exceptions import ValidationError
from proposal_ai.schemas.context import (
    ContextMetadata,
    ContextOptions,
    EnrichedContext,
    MarketInsights,
    ProjectStructureAnalysis,
    TechAnalysis,
)
from proposal_ai.schemas.session import AnalysisDepth
from proposal_ai.services.context_cache import ContextAnalyzer, ContextCache, ProjectContextAnalyzer


class StubAnalyzer(ContextAnalyzer):
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []

    async def analyze_project_structure(self, session_id, options, project, documents):
        self.calls.append(("project_structure", session_id))
        if "project_structure" in self.fail:
            raise RuntimeError("structure down")
        return ProjectStructureAnalysis(complexity=0.6, confidence=0.8)

    async def analyze_market(self, session_id, options, project, documents):
        self.calls.append(("market_insights", session_id))
        if "market_insights" in self.fail:
            raise RuntimeError("market down")
        return MarketInsights(trend_score=0.7, confidence=0.6)

    async def analyze_tech_trends(self, session_id, options, project, documents):
        self.calls.append(("tech_analysis", session_id))
        if "tech_analysis" in self.fail:
            raise RuntimeError("tech down")
        return TechAnalysis(adoption_rate=0.4, confidence=0.4)


@pytest.mark.asyncio
async def test_second_lookup_is_a_hit():
    analyzer = StubAnalyzer()
    cache = ContextCache(analyzer=analyzer, clock=FixedClock())

    first = await cache.get_or_update("s1")
    second = await cache.get_or_update("s1")

    assert first is second
    assert len(analyzer.calls) == 3
    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5
    assert stats["size"] == 1


@pytest.mark.asyncio
async def test_metadata_counts_sources_and_averages_confidence():
    cache = ContextCache(analyzer=StubAnalyzer(), clock=FixedClock())
    context = await cache.get_or_update("s1")
    assert context.metadata.data_source_count == 3
    assert context.metadata.total_confidence == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_force_refresh_rebuilds():
    analyzer = StubAnalyzer()
    cache = ContextCache(analyzer=analyzer, clock=FixedClock())
    await cache.get_or_update("s1")
    await cache.get_or_update("s1", force_refresh=True)
    assert len(analyzer.calls) == 6
    assert cache.get_stats()["misses"] == 2


@pytest.mark.asyncio
async def test_failed_sub_analysis_is_skipped():
    cache = ContextCache(analyzer=StubAnalyzer(fail={"market_insights"}), clock=FixedClock())
    context = await cache.get_or_update("s1")
    assert context.market_insights is None
    assert context.project_structure is not None
    assert context.metadata.data_source_count == 2
    assert context.metadata.total_confidence == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_options_disable_parts():
    analyzer = StubAnalyzer()
    cache = ContextCache(analyzer=analyzer, clock=FixedClock())
    options = ContextOptions(include_market_analysis=False, include_tech_trends=False)
    context = await cache.get_or_update("s1", options)
    assert [name for name, _ in analyzer.calls] == ["project_structure"]
    assert context.metadata.data_source_count == 1


@pytest.mark.asyncio
async def test_full_cache_evicts_oldest_entry():
    clock = FixedClock()
    cache = ContextCache(analyzer=StubAnalyzer(), max_size=2, clock=clock)
    await cache.get_or_update("a")
    clock.advance(seconds=1)
    await cache.get_or_update("b")
    clock.advance(seconds=1)
    await cache.get_or_update("c")

    assert cache.get_cache_status("a") == {"cached": False}
    assert cache.get_cache_status("b")["cached"]
    assert cache.get_cache_status("c")["cached"]


@pytest.mark.asyncio
async def test_ttl_expiry_forces_rebuild():
    clock = FixedClock()
    analyzer = StubAnalyzer()
    cache = ContextCache(analyzer=analyzer, ttl_seconds=60, clock=clock)
    await cache.get_or_update("s1")
    clock.advance(seconds=30)
    await cache.get_or_update("s1")
    assert len(analyzer.calls) == 3

    clock.advance(seconds=120)
    assert cache.get_cache_status("s1")["expired"]
    await cache.get_or_update("s1")
    assert len(analyzer.calls) == 6


@pytest.mark.asyncio
async def test_entries_never_expire_without_ttl():
    clock = FixedClock()
    cache = ContextCache(analyzer=StubAnalyzer(), clock=clock)
    await cache.get_or_update("s1")
    clock.advance(days=365)
    assert not cache.get_cache_status("s1")["expired"]


@pytest.mark.asyncio
async def test_invalidate_part_merges_into_entry():
    analyzer = StubAnalyzer(fail={"tech_analysis"})
    cache = ContextCache(analyzer=analyzer, clock=FixedClock())
    await cache.get_or_update("s1")

    analyzer.fail.clear()
    merged = await cache.invalidate_part("s1", "tech_analysis")

    assert merged.tech_analysis is not None
    assert merged.project_structure is not None
    assert merged.metadata.data_source_count == 3
    assert ("market_insights", "s1") in analyzer.calls
    assert analyzer.calls.count(("market_insights", "s1")) == 1


@pytest.mark.asyncio
async def test_invalidate_part_rejects_unknown_part():
    cache = ContextCache(analyzer=StubAnalyzer(), clock=FixedClock())
    with pytest.raises(ValidationError):
        await cache.invalidate_part("s1", "weather")


@pytest.mark.asyncio
async def test_invalidate_and_clear():
    cache = ContextCache(analyzer=StubAnalyzer(), clock=FixedClock())
    await cache.get_or_update("s1")
    assert cache.invalidate("s1")
    assert not cache.invalidate("s1")

    await cache.preload(["s1", "s2"])
    assert cache.get_stats()["size"] == 2
    cache.clear_all()
    assert cache.get_stats() == {
        "hits": 0,
        "misses": 0,
        "hit_rate": 0.0,
        "average_generation_time_ms": 0.0,
        "size": 0,
    }


def test_validate_context_with_no_sources():
    report = ContextCache.validate_context(EnrichedContext(session_id="s1"))
    assert not report["is_valid"]
    assert "No context sources available" in report["issues"]
    assert "Overall context confidence is low" in report["issues"]


def test_validate_context_flags_weak_part():
    context = EnrichedContext(
        session_id="s1",
        project_structure=ProjectStructureAnalysis(confidence=0.9),
        tech_analysis=TechAnalysis(confidence=0.3),
        metadata=ContextMetadata(data_source_count=2, total_confidence=0.6),
    )
    report = ContextCache.validate_context(context)
    assert report["issues"] == ["Technology analysis confidence is low"]


def test_context_summary():
    assert ContextCache.generate_context_summary(EnrichedContext(session_id="s1")) == "Basic analysis complete"

    context = EnrichedContext(
        session_id="s1",
        project_structure=ProjectStructureAnalysis(complexity=0.6, confidence=0.8),
        market_insights=MarketInsights(trend_score=0.7, confidence=0.6),
        tech_analysis=TechAnalysis(adoption_rate=0.4, confidence=0.4),
        metadata=ContextMetadata(data_source_count=3, total_confidence=0.6),
    )
    assert ContextCache.generate_context_summary(context) == (
        "3 sources analyzed: project complexity 60%, market trend score 70%, "
        "tech adoption 40% (confidence 60%)"
    )


@pytest.mark.asyncio
async def test_project_analyzer_reads_documents():
    analyzer = ProjectContextAnalyzer()
    options = ContextOptions(analysis_depth=AnalysisDepth.DEEP)
    project = {"name": "Claims portal", "industry": "Healthcare"}
    documents = [{"name": "RFP", "content": "React frontend, FastAPI services on Kubernetes with Postgres"}]

    structure = await analyzer.analyze_project_structure("s1", options, project, documents)
    market = await analyzer.analyze_market("s1", options, project, documents)
    tech = await analyzer.analyze_tech_trends("s1", options, project, documents)

    assert {"React", "FastAPI", "Kubernetes", "PostgreSQL"} <= set(structure.main_technologies)
    assert structure.scalability.bottlenecks == ["Single database"]
    assert market.market_size == "large"
    assert market.trend_score == 0.7
    assert tech.future_outlook == "positive"
    assert "Keep FastAPI as a core skill" in tech.recommendations


@pytest.mark.asyncio
async def test_project_analyzer_without_information():
    analyzer = ProjectContextAnalyzer()
    options = ContextOptions()
    market = await analyzer.analyze_market("s1", options, {}, [])
    tech = await analyzer.analyze_tech_trends("s1", options, {}, [])
    assert market.summary == "No industry information available"
    assert tech.summary == "No technology stack identified"
