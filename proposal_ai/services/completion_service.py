"""
Completion Service
Quota check, provider call, cost calculation and usage recording for a single completion.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from proposal_ai.services.pricing import CostBreakdown, PricingTable, calculate_cost
from proposal_ai.services.provider_adapter import (
    CompletionRequest,
    ProviderCompletion,
    ProviderRegistry,
)
from proposal_ai.services.quota_governor import QuotaGovernor

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    completion: ProviderCompletion
    cost: CostBreakdown

    def to_legacy_dict(self) -> Dict[str, Any]:
        """Response body with both the nested `data` shape and the flat mirror fields"""
        usage = self.completion.usage
        return {
            "success": True,
            "data": {
                "content": self.completion.content,
                "usage": {
                    "promptTokens": usage.input_tokens,
                    "completionTokens": usage.output_tokens,
                    "totalTokens": usage.total_tokens,
                },
                "model": self.completion.model,
                "finishReason": self.completion.finish_reason,
            },
            "content": self.completion.content,
            "usage": {
                "inputTokens": usage.input_tokens,
                "outputTokens": usage.output_tokens,
                "totalTokens": usage.total_tokens,
            },
            "cost": self.cost.to_dict(),
            "model": self.completion.model,
            "finishReason": self.completion.finish_reason,
            "responseTime": self.completion.response_time_ms,
        }


class CompletionService:
    """One provider call per invocation; usage is recorded only after a successful call"""

    def __init__(self, registry: ProviderRegistry, quota: Optional[QuotaGovernor] = None):
        self.registry = registry
        self.quota = quota

    async def complete(
        self,
        provider: str,
        request: CompletionRequest,
        user_id: Optional[str] = None,
        operation: str = "completion",
        endpoint: str = "/api/ai/completion",
    ) -> CompletionOutcome:
        # Rejects unknown providers before touching quota
        self.registry.get(provider)

        if user_id and self.quota is not None:
            await self.quota.ensure_can_request(user_id)

        completion = await self.registry.complete(provider, request, operation)

        pricing = PricingTable.lookup(provider, request.model)
        cost = calculate_cost(pricing, completion.usage.input_tokens, completion.usage.output_tokens)
        logger.info(
            f"[COMPLETION] {provider}/{request.model}: {completion.usage.total_tokens} tokens, "
            f"${cost.total_cost:.6f}, {completion.response_time_ms}ms"
        )

        if user_id and self.quota is not None:
            await self._record(user_id, provider, request.model, completion, cost, endpoint)
        elif not user_id:
            logger.debug("[COMPLETION] No user id; usage not recorded")

        return CompletionOutcome(completion=completion, cost=cost)

    async def _record(
        self,
        user_id: str,
        provider: str,
        model: str,
        completion: ProviderCompletion,
        cost: CostBreakdown,
        endpoint: str,
    ):
        try:
            await self.quota.record_request(
                user_id=user_id,
                provider=provider,
                model=model,
                input_tokens=completion.usage.input_tokens,
                output_tokens=completion.usage.output_tokens,
                cost=cost.total_cost,
                response_time_ms=completion.response_time_ms,
                endpoint=endpoint,
            )
        except Exception as e:
            # The completion already succeeded; a bookkeeping failure must not discard it
            logger.error(f"[COMPLETION] Failed to record usage for {user_id}: {e}")
