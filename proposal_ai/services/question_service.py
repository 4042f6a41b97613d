"""
Question Service
AI question generation with typed default sets when the model output is unusable.
"""

import logging
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from proposal_ai.core.exceptions import ProviderHTTPError, ProviderTimeout
from proposal_ai.schemas.session import AnalysisDepth
from proposal_ai.services.completion_service import CompletionOutcome, CompletionService
from proposal_ai.services.prompt_engine import DEPTH_MAX_QUESTIONS, PromptEngine
from proposal_ai.services.provider_adapter import CompletionRequest
from proposal_ai.services.response_extractor import extract_questions

logger = logging.getLogger(__name__)

QUESTIONS_MAX_TOKENS = 3000
QUESTIONS_TEMPERATURE = 0.7
QUESTIONS_ENDPOINT = "/api/ai/questions"


def _q(category, text, help_text, priority="high", confidence=0.9, type="textarea", options=None):
    return {
        "category": category,
        "text": text,
        "type": type,
        "options": options,
        "required": True,
        "helpText": help_text,
        "priority": priority,
        "confidence": confidence,
    }


PRE_ANALYSIS_DEFAULTS = [
    _q("RFP analysis",
       "Based on the RFP, how do we understand the client's core requirements?",
       "Summarize the project's main purpose and what the client values most."),
    _q("Competitive strategy",
       "What sets our proposal apart from competing agencies?",
       "Compare our strengths with the agencies expected to bid."),
    _q("Technical solution",
       "Which technology stack will we propose to meet the RFP's technical requirements?",
       "Include frontend, backend and database choices with the reasons for each."),
]

DEFAULT_QUESTIONS: Dict[str, List[Dict[str, Any]]] = {
    "personas_questions": [
        _q("User profile",
           "Who are the main end-user groups of the project according to the RFP?",
           "Used in the target user section. Include job titles, roles and position in the organization."),
        _q("Pain points",
           "What core problems and frustrations do the target users face today?",
           "Used in the problem statement. Describe concrete work situations."),
        _q("User needs",
           "What value and goals do users expect from this service?",
           "Used in the value proposition. Include expected gains such as efficiency or cost savings."),
        _q("Behaviour",
           "What are the target users' current workflows and digital tool habits?",
           "Used to shape the UX direction. Describe a typical working day.",
           priority="medium", confidence=0.85),
        _q("Digital proficiency",
           "How proficient are the target users with IT and digital tools?",
           "Used to set UI complexity and the onboarding strategy.",
           priority="medium", confidence=0.85, type="select",
           options=["Beginner", "Intermediate", "Advanced", "Expert"]),
        _q("Channels",
           "Which devices and access environments do users mainly use?",
           "Used in the multichannel strategy.",
           priority="medium", confidence=0.85, type="multiselect",
           options=["Desktop", "Laptop", "Tablet", "Smartphone", "Internal network", "External network"]),
    ],
    "market_research_questions": [
        _q("Market size",
           "What is the market size and growth outlook for similar projects in the client's industry?",
           "Used in the market analysis. Include size, growth rate and trends."),
        _q("Competition",
           "Which agencies are likely to bid on this RFP, and what are their strengths and weaknesses?",
           "Used in the differentiation strategy."),
        _q("Business environment",
           "How strategically important is this project within the client's business?",
           "Analyze the business value of the project from the client's side.",
           confidence=0.85),
        _q("Technology trends",
           "Which current technology trends match the RFP requirements, and how would we apply them?",
           "Describe successful industry solutions and our approach.",
           priority="medium", confidence=0.85),
        _q("Differentiation",
           "Which market opportunities and ROI evidence can the proposal highlight?",
           "Collect data and case studies that raise the chance of winning.",
           confidence=0.85),
    ],
    "proposal_questions": [
        _q("Proposed solution",
           "Which key features and technical approach do we propose to meet the RFP's core requirements?",
           "Used directly in the proposed solution section."),
        _q("Architecture",
           "Which technology stack do we propose, and why?",
           "Explain the frontend, backend, database and infrastructure choices."),
        _q("Team",
           "How will our project team be structured, and what are the roles?",
           "List people per role and their time on the project."),
        _q("Schedule",
           "Into which phases will the project be split, and what are the durations and deliverables?",
           "Include milestones, dates and main deliverables."),
        _q("Budget",
           "What is the total project cost and its breakdown?",
           "Break down labour, infrastructure and licence costs."),
        _q("Differentiators",
           "What differentiates us from competing agencies?",
           "Describe our strengths, similar projects and unique proposal points."),
    ],
}


def default_questions(request_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Static question set for the request type; the pre-analysis set when the type is unknown"""
    return deepcopy(DEFAULT_QUESTIONS.get(request_type or "", PRE_ANALYSIS_DEFAULTS))


@dataclass
class QuestionSet:
    questions: List[Dict[str, Any]]
    source: str
    outcome: Optional[CompletionOutcome] = None

    def categories(self) -> List[str]:
        seen: List[str] = []
        for q in self.questions:
            if q["category"] not in seen:
                seen.append(q["category"])
        return seen

    def to_response(self, project_id: str, model: str) -> Dict[str, Any]:
        if self.outcome is not None:
            usage = self.outcome.completion.usage
            usage_body = {
                "inputTokens": usage.input_tokens,
                "outputTokens": usage.output_tokens,
                "totalTokens": usage.total_tokens,
            }
            cost_body = self.outcome.cost.to_dict()
            response_time = self.outcome.completion.response_time_ms
        else:
            usage_body = {"inputTokens": 0, "outputTokens": 0, "totalTokens": 0}
            cost_body = {"inputCost": 0.0, "outputCost": 0.0, "totalCost": 0.0}
            response_time = 0

        return {
            "questions": self.questions,
            "usage": usage_body,
            "cost": cost_body,
            "model": model,
            "responseTime": response_time,
            "metadata": {
                "projectId": project_id,
                "totalQuestions": len(self.questions),
                "categories": self.categories(),
                "source": self.source,
            },
        }


class QuestionService:
    def __init__(self, completion_service: CompletionService, prompt_engine: Optional[PromptEngine] = None):
        self.completion_service = completion_service
        self.prompt_engine = prompt_engine or PromptEngine()

    async def generate(
        self,
        provider: str,
        model: str,
        project: Dict[str, Any],
        documents: List[Dict[str, Any]],
        pre_analysis: Optional[Dict[str, Any]] = None,
        request_type: Optional[str] = None,
        user_id: Optional[str] = None,
        depth: AnalysisDepth = AnalysisDepth.STANDARD,
        fallback_on_provider_error: bool = True,
    ) -> QuestionSet:
        """
        Ask the model for questions.

        Unparseable output always yields the default set. Provider HTTP errors and
        timeouts yield it too unless fallback_on_provider_error is False; quota,
        validation and key configuration errors are always raised.
        """
        prompt = self.prompt_engine.build_questions_prompt(
            project,
            documents,
            pre_analysis=pre_analysis,
            request_type=request_type,
            max_questions=DEPTH_MAX_QUESTIONS[AnalysisDepth(depth)],
        )
        request = CompletionRequest(
            model=model,
            prompt=prompt,
            max_tokens=QUESTIONS_MAX_TOKENS,
            temperature=QUESTIONS_TEMPERATURE,
        )

        try:
            outcome = await self.completion_service.complete(
                provider, request, user_id=user_id, operation="questions", endpoint=QUESTIONS_ENDPOINT
            )
        except (ProviderHTTPError, ProviderTimeout) as e:
            if not fallback_on_provider_error:
                raise
            logger.warning(f"[QUESTIONS] Provider call failed, using default questions: {e.message}")
            return QuestionSet(questions=default_questions(request_type), source="default")

        questions = extract_questions(outcome.completion.content)
        if not questions:
            logger.warning(
                f"[QUESTIONS] No usable questions in {len(outcome.completion.content)} chars of output; "
                f"using defaults for '{request_type or 'pre_analysis'}'"
            )
            return QuestionSet(questions=default_questions(request_type), source="default", outcome=outcome)

        logger.info(f"[QUESTIONS] Generated {len(questions)} questions with {provider}/{model}")
        return QuestionSet(questions=questions, source="ai", outcome=outcome)
