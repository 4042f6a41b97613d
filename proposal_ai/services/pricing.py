"""
Per-model pricing and token estimation
"""

import math
from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens, plus the model's output ceiling"""
    input_cost_per_million: float
    output_cost_per_million: float
    max_tokens: int = 4096


@dataclass(frozen=True)
class CostBreakdown:
    input_cost: float
    output_cost: float
    total_cost: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "totalCost": self.total_cost,
        }


class PricingTable:
    """Static per-provider pricing; unknown models resolve to the provider's default tier"""

    PRICES: Dict[str, Dict[str, ModelPricing]] = {
        "anthropic": {
            "claude-sonnet-4-20250514": ModelPricing(3, 15, 8192),
            "claude-3-5-sonnet-20241022": ModelPricing(3, 15, 8192),
            "claude-3-opus-20240229": ModelPricing(15, 75, 4096),
            "claude-3-haiku-20240307": ModelPricing(0.25, 1.25, 4096),
        },
        "openai": {
            "gpt-4o": ModelPricing(5, 15, 16384),
            "gpt-4o-mini": ModelPricing(0.15, 0.6, 16384),
            "gpt-4-turbo": ModelPricing(10, 30, 4096),
            "gpt-3.5-turbo": ModelPricing(0.5, 1.5, 4096),
        },
        "google": {
            "gemini-2.0-flash-exp": ModelPricing(0.075, 0.3, 8192),
            "gemini-1.5-pro": ModelPricing(1.25, 5, 8192),
            "gemini-1.5-flash": ModelPricing(0.075, 0.3, 8192),
        },
    }

    DEFAULTS: Dict[str, ModelPricing] = {
        "anthropic": ModelPricing(3, 15, 4096),
        "openai": ModelPricing(5, 15, 4096),
        "google": ModelPricing(1.25, 5, 8192),
    }

    @classmethod
    def lookup(cls, provider: str, model: str) -> ModelPricing:
        provider = (provider or "").lower()
        models = cls.PRICES.get(provider, {})
        if model in models:
            return models[model]
        return cls.DEFAULTS.get(provider, cls.DEFAULTS["openai"])

    @classmethod
    def is_known(cls, provider: str, model: str) -> bool:
        return model in cls.PRICES.get((provider or "").lower(), {})

    @classmethod
    def models_for(cls, provider: str) -> Dict[str, ModelPricing]:
        return dict(cls.PRICES.get((provider or "").lower(), {}))


def calculate_cost(pricing: ModelPricing, input_tokens: int, output_tokens: int) -> CostBreakdown:
    """Cost in USD. The total is one expression so identical inputs give identical floats."""
    input_cost = (input_tokens * pricing.input_cost_per_million) / 1_000_000
    output_cost = (output_tokens * pricing.output_cost_per_million) / 1_000_000
    total_cost = (input_tokens * pricing.input_cost_per_million
                  + output_tokens * pricing.output_cost_per_million) / 1_000_000
    return CostBreakdown(input_cost=input_cost, output_cost=output_cost, total_cost=total_cost)


class TokenEstimator:
    """Character-length token approximation for providers that do not report usage"""

    CHARS_PER_TOKEN: Dict[str, float] = {
        "anthropic": 3.5,
        "openai": 4.0,
        "google": 4.0,
    }
    DEFAULT_CHARS_PER_TOKEN = 4.0

    @classmethod
    def ratio(cls, provider: str) -> float:
        return cls.CHARS_PER_TOKEN.get((provider or "").lower(), cls.DEFAULT_CHARS_PER_TOKEN)

    @classmethod
    def estimate(cls, text: str, provider: str = "openai") -> int:
        if not text:
            return 0
        return math.ceil(len(text) / cls.ratio(provider))
