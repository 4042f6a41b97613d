"""
Prompt Engine
Builds the prompts sent to providers for each analysis stage, optionally
enriched with cached session context.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from proposal_ai.schemas.context import (
    EnrichedContext,
    MarketInsights,
    ProjectStructureAnalysis,
    TechAnalysis,
)
from proposal_ai.schemas.session import AnalysisDepth, AnalysisResult, Answer, Question

logger = logging.getLogger(__name__)

DEPTH_MAX_TOKENS: Dict[AnalysisDepth, int] = {
    AnalysisDepth.QUICK: 1500,
    AnalysisDepth.STANDARD: 3000,
    AnalysisDepth.DEEP: 6000,
    AnalysisDepth.COMPREHENSIVE: 8000,
}

DEPTH_MAX_QUESTIONS: Dict[AnalysisDepth, int] = {
    AnalysisDepth.QUICK: 8,
    AnalysisDepth.STANDARD: 15,
    AnalysisDepth.DEEP: 25,
    AnalysisDepth.COMPREHENSIVE: 35,
}

ANALYSIS_TYPES = ("project", "market", "technical", "comprehensive")

SYSTEM_PROMPTS = {
    "project": "You are a software project analyst. You assess the technical structure, "
               "business value and feasibility of a project.",
    "market": "You are a market analyst. You study market trends, the competitive landscape "
              "and business opportunities to produce strategic insight.",
    "technical": "You are a technical architect. You judge the suitability, scalability and "
                 "maintainability of a technology stack and recommend improvements.",
    "comprehensive": "You are a project consultant. You combine technical, market and business "
                     "perspectives into one analysis of the project.",
}

FALLBACK_SYSTEM_PROMPT = "You are a project analyst. Analyze the project using the information provided."

CONTEXT_PRIORITY = {
    "project": ["project", "tech", "market"],
    "market": ["market", "project", "tech"],
    "technical": ["tech", "project", "market"],
    "comprehensive": ["project", "market", "tech"],
}

ANALYSIS_INSTRUCTIONS = {
    "project": (
        "1. Check that the project structure and technology choices fit the business goals\n"
        "2. Set technical priorities that reflect market requirements\n"
        "3. Judge the architecture for scalability and maintainability\n"
        "4. Present risks and opportunities in balance"
    ),
    "market": (
        "1. Derive a positioning strategy from market trends and competition\n"
        "2. Connect technical differentiators to market opportunities\n"
        "3. Assess go-to-market strategy against technical feasibility\n"
        "4. Recommend technical moves that secure a competitive advantage"
    ),
    "technical": (
        "1. Compare the current stack with technology trends\n"
        "2. Analyze technical debt and future scaling needs\n"
        "3. Balance performance optimization with delivery speed\n"
        "4. Outline a technology roadmap and risk management plan"
    ),
    "comprehensive": (
        "1. Integrate technical, market and business perspectives\n"
        "2. Weigh short-term feasibility against long-term strategic value\n"
        "3. Identify risks and opportunities from several angles\n"
        "4. Recommend execution priorities and resource allocation"
    ),
}

QUESTION_FOCUS = {
    "market_research_questions": (
        "Generate market research questions for our internal research team. The answers "
        "feed the market analysis and differentiation sections of the proposal. Cover market "
        "size, competing agencies, the client's business environment, technology trends and "
        "differentiation points."
    ),
    "personas_questions": (
        "Generate questions that define the target personas of the client's service: "
        "demographics, goals, pain points, digital behaviour and decision factors."
    ),
    "proposal_questions": (
        "Generate questions that shape the written proposal: the client's core problem, "
        "our solution, the technical approach, schedule, team and expected results."
    ),
}

DEFAULT_QUESTION_FOCUS = (
    "Generate questions that clarify the requirements found in the RFP, the competitive "
    "strategy for the bid and the technical solution to propose."
)


def complexity_label(complexity: float) -> str:
    if complexity < 0.3:
        return "low"
    if complexity < 0.6:
        return "medium"
    if complexity < 0.8:
        return "high"
    return "very high"


def trend_label(score: float) -> str:
    if score < 0.3:
        return "declining"
    if score < 0.5:
        return "stable"
    if score < 0.7:
        return "growing"
    return "hot"


def _pct(value: float) -> str:
    return f"{round(value * 100)}%"


def _bullets(items: List[str], limit: int = 3, empty: str = "- none identified") -> str:
    lines = [f"- {item}" for item in items[:limit]]
    return "\n".join(lines) if lines else empty


@dataclass
class EnhancedPrompt:
    system_prompt: str
    user_prompt: str
    context_summary: str
    estimated_tokens: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class PromptEngine:
    """Prompt construction for the analysis pipeline. Stateless."""

    # ── Context-aware prompts ────────────────────────────────────────

    def build_context_aware_prompt(
        self,
        base_prompt: str,
        context: Optional[EnrichedContext],
        analysis_type: str = "comprehensive",
    ) -> EnhancedPrompt:
        try:
            if context is None:
                raise ValueError("no context available")
            if analysis_type not in ANALYSIS_TYPES:
                analysis_type = "comprehensive"

            system_prompt = self._system_prompt(analysis_type, context)
            user_prompt = (
                f"{base_prompt}{self._context_section(context, analysis_type)}\n"
                f"## Analysis instructions\n\n{ANALYSIS_INSTRUCTIONS[analysis_type]}\n\n"
                "Use the context above together with the base information. Weigh each source "
                "by its confidence and explain how the findings relate to each other."
            )
            return EnhancedPrompt(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                context_summary=self._context_summary(context),
                estimated_tokens=math.ceil(len(system_prompt + user_prompt) / 4),
                metadata={
                    "has_project_context": context.project_structure is not None,
                    "has_market_context": context.market_insights is not None,
                    "has_tech_context": context.tech_analysis is not None,
                    "context_confidence": context.metadata.total_confidence,
                },
            )
        except Exception as e:
            logger.warning(f"[PROMPT] Falling back to the plain prompt: {e}")
            return self.fallback_prompt(base_prompt)

    @staticmethod
    def fallback_prompt(base_prompt: str) -> EnhancedPrompt:
        return EnhancedPrompt(
            system_prompt=FALLBACK_SYSTEM_PROMPT,
            user_prompt=base_prompt,
            context_summary="Basic analysis mode (no context)",
            estimated_tokens=math.ceil(len(base_prompt) / 4),
            metadata={
                "has_project_context": False,
                "has_market_context": False,
                "has_tech_context": False,
                "context_confidence": 0,
            },
        )

    def _system_prompt(self, analysis_type: str, context: EnrichedContext) -> str:
        capabilities = []
        if context.project_structure is not None:
            ps = context.project_structure
            capabilities.append(
                f"- Project structure (confidence {_pct(ps.confidence)}): complexity {_pct(ps.complexity)}, "
                f"technologies {', '.join(ps.main_technologies) or 'unknown'}, pattern {ps.architecture.pattern}"
            )
        if context.market_insights is not None:
            mi = context.market_insights
            capabilities.append(
                f"- Market insights (confidence {_pct(mi.confidence)}): size {mi.market_size}, "
                f"{len(mi.competitors)} competitors, trend {_pct(mi.trend_score)}"
            )
        if context.tech_analysis is not None:
            ta = context.tech_analysis
            capabilities.append(
                f"- Technology trends (confidence {_pct(ta.confidence)}): trend {_pct(ta.trend_score)}, "
                f"adoption {_pct(ta.adoption_rate)}, {len(ta.recommendations)} recommendations"
            )
        available = "\n".join(capabilities) or "- No additional context. Perform a basic analysis."

        return (
            f"{SYSTEM_PROMPTS[analysis_type]}\n\n"
            f"## Available context\n\n{available}\n\n"
            "Base every conclusion on evidence and keep recommendations actionable."
        )

    def _context_section(self, context: EnrichedContext, analysis_type: str) -> str:
        section = "\n\n## Additional context\n\n"
        for kind in CONTEXT_PRIORITY[analysis_type]:
            if kind == "project" and context.project_structure is not None:
                section += self._format_project(context.project_structure)
            elif kind == "market" and context.market_insights is not None:
                section += self._format_market(context.market_insights)
            elif kind == "tech" and context.tech_analysis is not None:
                section += self._format_tech(context.tech_analysis)

        available = sum(
            part is not None
            for part in (context.project_structure, context.market_insights, context.tech_analysis)
        )
        if available > 1:
            section += (
                "### Integrating the context\n"
                "- Does the project structure match market requirements?\n"
                "- Do technology choices follow market trends?\n"
                "- Are scalability needs compatible with technical constraints?\n\n"
                f"Overall confidence: {context.metadata.total_confidence * 100:.1f}%, "
                f"sources: {context.metadata.data_source_count}\n\n"
            )
        else:
            section += "Note: the analysis runs on limited context.\n\n"
        return section

    @staticmethod
    def _format_project(ps: ProjectStructureAnalysis) -> str:
        return (
            "### Project structure\n\n"
            f"Summary: {ps.summary}\n"
            f"- Complexity: {_pct(ps.complexity)} ({complexity_label(ps.complexity)})\n"
            f"- Main technologies: {', '.join(ps.main_technologies) or 'unknown'}\n"
            f"- Architecture: {ps.architecture.pattern} (modularity {_pct(ps.architecture.modularity)})\n"
            f"- Code quality: {_pct(ps.code_quality.score)}\n"
            f"- Scalability: {_pct(ps.scalability.score)}; bottlenecks: "
            f"{', '.join(ps.scalability.bottlenecks) or 'none identified'}\n\n"
        )

    @staticmethod
    def _format_market(mi: MarketInsights) -> str:
        competitors = ", ".join(f"{c.name} ({_pct(c.strength)})" for c in mi.competitors[:3])
        return (
            "### Market insights\n\n"
            f"Summary: {mi.summary}\n"
            f"- Market size: {mi.market_size}\n"
            f"- Trend: {_pct(mi.trend_score)} ({trend_label(mi.trend_score)})\n"
            f"- Main competitors: {competitors or 'unknown'}\n\n"
            f"Opportunities:\n{_bullets(mi.opportunities)}\n\n"
            f"Threats:\n{_bullets(mi.threats)}\n\n"
        )

    @staticmethod
    def _format_tech(ta: TechAnalysis) -> str:
        return (
            "### Technology trends\n\n"
            f"Summary: {ta.summary}\n"
            f"- Trend: {_pct(ta.trend_score)} ({trend_label(ta.trend_score)})\n"
            f"- Adoption: {_pct(ta.adoption_rate)}\n"
            f"- Outlook: {ta.future_outlook or 'unknown'}\n\n"
            f"Recommendations:\n{_bullets(ta.recommendations)}\n\n"
            f"Alternatives:\n{_bullets(ta.alternative_tech)}\n\n"
            f"Risks:\n{_bullets(ta.risk_factors)}\n\n"
        )

    @staticmethod
    def _context_summary(context: EnrichedContext) -> str:
        parts = []
        if context.project_structure is not None:
            parts.append(f"project structure (complexity {_pct(context.project_structure.complexity)})")
        if context.market_insights is not None:
            parts.append(f"market (trend {_pct(context.market_insights.trend_score)})")
        if context.tech_analysis is not None:
            parts.append(f"technology (trend {_pct(context.tech_analysis.trend_score)})")
        if not parts:
            return "Basic analysis mode"
        return f"{', '.join(parts)} - confidence {context.metadata.total_confidence * 100:.1f}%"

    # ── Stage prompts ────────────────────────────────────────────────

    @staticmethod
    def _project_block(project: Dict[str, Any]) -> str:
        return (
            f"- Name: {project.get('name') or 'TBD'}\n"
            f"- Description: {project.get('description') or 'TBD'}\n"
            f"- Industry: {project.get('industry') or 'TBD'}\n"
        )

    @staticmethod
    def _documents_block(documents: List[Dict[str, Any]], content_chars: int = 4000) -> str:
        if not documents:
            return "(no documents uploaded)\n"
        lines = []
        for i, doc in enumerate(documents, 1):
            lines.append(f"{i}. {doc.get('name') or 'document'}")
            if doc.get("summary"):
                lines.append(f"   Summary: {doc['summary']}")
            if doc.get("content"):
                lines.append(f"   Content: {str(doc['content'])[:content_chars]}")
        return "\n".join(lines) + "\n"

    def build_analysis_prompt(
        self,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        depth: AnalysisDepth = AnalysisDepth.STANDARD,
    ) -> str:
        return (
            "Analyze the following project and its RFP documents for a proposal team.\n\n"
            f"# Project\n{self._project_block(project)}\n"
            f"# Documents\n{self._documents_block(documents)}\n"
            f"Analysis depth: {AnalysisDepth(depth).value}\n\n"
            "Return only JSON with this shape:\n"
            "{\n"
            '  "summary": "overall summary",\n'
            '  "keyFindings": ["finding"],\n'
            '  "risks": [{"title": "", "description": "", "severity": "low|medium|high|critical", '
            '"probability": 0-100, "impact": 0-100, "mitigation": ""}],\n'
            '  "recommendations": ["recommendation"],\n'
            '  "timeline": [{"phase": "", "duration": days, "milestones": [""]}]\n'
            "}"
        )

    def build_questions_prompt(
        self,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        pre_analysis: Optional[Dict[str, Any]] = None,
        request_type: Optional[str] = None,
        max_questions: int = 15,
    ) -> str:
        prompt = (
            "You are a business development researcher at an experienced web agency.\n\n"
            f"# Mission\n{QUESTION_FOCUS.get(request_type or '', DEFAULT_QUESTION_FOCUS)}\n\n"
            f"# Project\n{self._project_block(project)}\n"
        )

        report = (pre_analysis or {}).get("report") or {}
        analyses = (pre_analysis or {}).get("documentAnalyses") or []
        if report or analyses:
            prompt += "# Pre-analysis insights\n"
            if report:
                prompt += f"Summary: {report.get('summary') or 'none'}\n"
                findings = report.get("key_findings") or report.get("keyFindings") or []
                if findings:
                    prompt += "Key findings:\n" + _bullets(findings, limit=10) + "\n"
                recommendations = report.get("recommendations") or []
                if recommendations:
                    prompt += "Recommendations:\n" + _bullets(recommendations, limit=10) + "\n"
            for i, analysis in enumerate(analyses, 1):
                prompt += f"{i}. {analysis.get('document_name') or 'document'}: {analysis.get('summary') or 'none'}\n"
            prompt += "\n"
        else:
            prompt += "(No pre-analysis data is available for this project.)\n\n"

        if documents:
            prompt += "# Uploaded documents\n"
            prompt += "\n".join(f"{i}. {doc.get('name') or 'document'}" for i, doc in enumerate(documents, 1))
            prompt += "\n\n"

        prompt += (
            f"Generate at most {max_questions} questions.\n\n"
            "Return only JSON:\n"
            "{\n"
            '  "questions": [\n'
            "    {\n"
            '      "category": "category name",\n'
            '      "question": "question text",\n'
            '      "expectedFormat": "text|textarea|select|multiselect|number",\n'
            '      "options": ["option"],\n'
            '      "required": true,\n'
            '      "context": "why this question matters",\n'
            '      "priority": "high|medium|low",\n'
            '      "confidenceScore": 0.0-1.0\n'
            "    }\n"
            "  ]\n"
            "}"
        )
        return prompt

    def build_report_prompt(
        self,
        analysis: Optional[AnalysisResult],
        questions: List[Question],
        answers: List[Answer],
    ) -> str:
        answers_by_question = {a.question_id: a for a in answers}
        qa_lines = []
        for question in questions:
            answer = answers_by_question.get(question.id)
            if answer is None or not answer.is_filled:
                value = "(no answer)"
            elif isinstance(answer.value, list):
                value = ", ".join(str(v) for v in answer.value)
            else:
                value = str(answer.value)
            qa_lines.append(f"- [{question.category}] {question.text}\n  Answer: {value}")

        analysis_block = "(no analysis available)"
        if analysis is not None:
            analysis_block = json.dumps(
                {
                    "summary": analysis.summary,
                    "keyFindings": analysis.key_findings,
                    "risks": [r.model_dump() for r in analysis.risks],
                    "recommendations": analysis.recommendations,
                },
                ensure_ascii=False,
                indent=2,
            )

        return (
            "Write the pre-analysis report for this proposal using the analysis and the team's answers.\n\n"
            f"# Analysis\n{analysis_block}\n\n"
            f"# Questions and answers\n{chr(10).join(qa_lines) or '(no questions answered)'}\n\n"
            "Return only JSON:\n"
            "{\n"
            '  "summary": "",\n'
            '  "executiveSummary": "",\n'
            '  "keyInsights": [""],\n'
            '  "riskAssessment": {"high": [], "medium": [], "low": []},\n'
            '  "recommendations": [""],\n'
            '  "baselineData": {}\n'
            "}"
        )
