"""
Timeout budgets and helpers for outbound AI provider calls
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional
import logging

from proposal_ai.core.exceptions import ProviderTimeout

logger = logging.getLogger(__name__)


class TimeoutConfig:
    """Per-operation time budgets in seconds"""
    DEFAULT_TIMEOUT = 25.0

    TIMEOUTS: Dict[str, float] = {
        "completion": 25.0,  # interactive single completion
        "questions": 25.0,  # conversational question generation
        "analysis": 120.0,  # full-document analysis
        "report": 180.0,  # report synthesis
    }

    def __init__(self, overrides: Optional[Dict[str, float]] = None):
        self.timeouts = dict(self.TIMEOUTS)
        if overrides:
            self.timeouts.update({k: float(v) for k, v in overrides.items() if v})

    @classmethod
    def from_settings(cls, settings) -> "TimeoutConfig":
        return cls({
            "completion": settings.COMPLETION_TIMEOUT_SECONDS,
            "questions": settings.QUESTIONS_TIMEOUT_SECONDS,
            "analysis": settings.ANALYSIS_TIMEOUT_SECONDS,
            "report": settings.REPORT_TIMEOUT_SECONDS,
        })

    def get_timeout(self, operation: str) -> float:
        """Get timeout for a specific operation"""
        return self.timeouts.get(operation.lower(), self.DEFAULT_TIMEOUT)


async def run_with_timeout(awaitable: Awaitable[Any], timeout_seconds: float, provider: str) -> Any:
    """Await with a hard budget; the pending call is cancelled and ProviderTimeout raised on expiry"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(f"[TIMEOUT] {provider} call exceeded {timeout_seconds:g}s budget")
        raise ProviderTimeout(provider, timeout_seconds)

