"""
Tests for prompt construction
"""

import math

import pytest

from proposal_ai.schemas.context import (
    ContextMetadata,
    EnrichedContext,
    MarketInsights,
    ProjectStructureAnalysis,
    TechAnalysis,
)
from proposal_ai.schemas.session import AnalysisDepth, AnalysisResult, Answer, Question
from proposal_ai.services.prompt_engine import (
    DEPTH_MAX_QUESTIONS,
    DEPTH_MAX_TOKENS,
    FALLBACK_SYSTEM_PROMPT,
    QUESTION_FOCUS,
    SYSTEM_PROMPTS,
    PromptEngine,
    complexity_label,
    trend_label,
)


def _full_context():
    return EnrichedContext(
        session_id="s1",
        project_structure=ProjectStructureAnalysis(summary="Layered web app", complexity=0.65,
                                                   main_technologies=["React"], confidence=0.8),
        market_insights=MarketInsights(summary="Growing market", trend_score=0.55, confidence=0.6),
        tech_analysis=TechAnalysis(summary="Modern stack", trend_score=0.75, confidence=0.7),
        metadata=ContextMetadata(data_source_count=3, total_confidence=0.7),
    )


@pytest.mark.parametrize(
    "value,label",
    [(0.1, "low"), (0.3, "medium"), (0.59, "medium"), (0.6, "high"), (0.8, "very high")],
)
def test_complexity_label(value, label):
    assert complexity_label(value) == label


@pytest.mark.parametrize(
    "value,label",
    [(0.2, "declining"), (0.3, "stable"), (0.5, "growing"), (0.7, "hot")],
)
def test_trend_label(value, label):
    assert trend_label(value) == label


def test_depth_budgets_grow_with_depth():
    depths = [AnalysisDepth.QUICK, AnalysisDepth.STANDARD, AnalysisDepth.DEEP, AnalysisDepth.COMPREHENSIVE]
    tokens = [DEPTH_MAX_TOKENS[d] for d in depths]
    questions = [DEPTH_MAX_QUESTIONS[d] for d in depths]
    assert tokens == sorted(tokens)
    assert questions == sorted(questions)


def test_context_sections_follow_analysis_type_priority():
    prompt = PromptEngine().build_context_aware_prompt("Base info", _full_context(), "market")

    user = prompt.user_prompt
    assert user.startswith("Base info")
    assert user.index("### Market insights") < user.index("### Project structure") < user.index("### Technology trends")
    assert "### Integrating the context" in user
    assert "Overall confidence: 70.0%, sources: 3" in user
    assert prompt.system_prompt.startswith(SYSTEM_PROMPTS["market"])


def test_technical_type_puts_tech_first():
    user = PromptEngine().build_context_aware_prompt("Base", _full_context(), "technical").user_prompt
    assert user.index("### Technology trends") < user.index("### Project structure") < user.index("### Market insights")


def test_labels_appear_in_sections():
    user = PromptEngine().build_context_aware_prompt("Base", _full_context()).user_prompt
    assert "Complexity: 65% (high)" in user
    assert "Trend: 55% (growing)" in user
    assert "Trend: 75% (hot)" in user


def test_estimated_tokens_and_metadata():
    prompt = PromptEngine().build_context_aware_prompt("Base", _full_context(), "project")
    assert prompt.estimated_tokens == math.ceil(len(prompt.system_prompt + prompt.user_prompt) / 4)
    assert prompt.metadata == {
        "has_project_context": True,
        "has_market_context": True,
        "has_tech_context": True,
        "context_confidence": 0.7,
    }
    assert prompt.context_summary.endswith("confidence 70.0%")


def test_single_part_context_notes_limited_context():
    context = EnrichedContext(
        session_id="s1",
        tech_analysis=TechAnalysis(trend_score=0.4, confidence=0.5),
        metadata=ContextMetadata(data_source_count=1, total_confidence=0.5),
    )
    prompt = PromptEngine().build_context_aware_prompt("Base", context, "project")
    assert "limited context" in prompt.user_prompt
    assert "### Integrating the context" not in prompt.user_prompt
    assert not prompt.metadata["has_project_context"]


def test_unknown_analysis_type_uses_comprehensive():
    prompt = PromptEngine().build_context_aware_prompt("Base", _full_context(), "astrology")
    assert prompt.system_prompt.startswith(SYSTEM_PROMPTS["comprehensive"])


def test_missing_context_returns_plain_prompt():
    prompt = PromptEngine().build_context_aware_prompt("Base info", None)
    assert prompt.system_prompt == FALLBACK_SYSTEM_PROMPT
    assert prompt.user_prompt == "Base info"
    assert prompt.metadata["context_confidence"] == 0
    assert prompt.estimated_tokens == math.ceil(len("Base info") / 4)


def test_analysis_prompt_lists_documents():
    prompt = PromptEngine().build_analysis_prompt(
        {"name": "Portal", "industry": "retail"},
        [{"name": "rfp.pdf", "summary": "Scope", "content": "x" * 5000}],
        AnalysisDepth.DEEP,
    )
    assert "- Name: Portal" in prompt
    assert "- Description: TBD" in prompt
    assert "1. rfp.pdf" in prompt
    assert "Content: " + "x" * 4000 + "\n" in prompt
    assert "Analysis depth: deep" in prompt
    assert '"keyFindings"' in prompt


def test_questions_prompt_with_pre_analysis():
    pre_analysis = {
        "report": {"summary": "Big RFP", "key_findings": ["Tight deadline"], "recommendations": ["Partner"]},
        "documentAnalyses": [{"document_name": "rfp.pdf", "summary": "Scope"}],
    }
    prompt = PromptEngine().build_questions_prompt(
        {"name": "Portal"}, [{"name": "rfp.pdf"}], pre_analysis, "personas_questions", max_questions=8
    )
    assert QUESTION_FOCUS["personas_questions"] in prompt
    assert "Summary: Big RFP" in prompt
    assert "- Tight deadline" in prompt
    assert "1. rfp.pdf: Scope" in prompt
    assert "Generate at most 8 questions." in prompt


def test_questions_prompt_without_pre_analysis():
    prompt = PromptEngine().build_questions_prompt({"name": "Portal"}, [])
    assert "No pre-analysis data is available" in prompt
    assert "# Uploaded documents" not in prompt


def test_report_prompt_includes_answers():
    questions = [
        Question(id="s1_ai_0_aa", session_id="s1", text="Budget?", category="Commercial"),
        Question(id="s1_ai_1_bb", session_id="s1", text="Stack?", category="Technical"),
        Question(id="s1_ai_2_cc", session_id="s1", text="Team?", category="Delivery"),
    ]
    answers = [
        Answer(id="a1", session_id="s1", question_id="s1_ai_0_aa", value=250000),
        Answer(id="a2", session_id="s1", question_id="s1_ai_1_bb", value=["React", "FastAPI"]),
        Answer(id="a3", session_id="s1", question_id="s1_ai_2_cc", value="Five people", is_draft=True),
    ]
    analysis = AnalysisResult(session_id="s1", summary="Solid opportunity", key_findings=["Clear scope"])

    prompt = PromptEngine().build_report_prompt(analysis, questions, answers)

    assert "- [Commercial] Budget?\n  Answer: 250000" in prompt
    assert "Answer: React, FastAPI" in prompt
    assert "- [Delivery] Team?\n  Answer: (no answer)" in prompt
    assert '"summary": "Solid opportunity"' in prompt


def test_report_prompt_without_analysis():
    prompt = PromptEngine().build_report_prompt(None, [], [])
    assert "(no analysis available)" in prompt
    assert "(no questions answered)" in prompt
