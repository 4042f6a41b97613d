"""
Custom exception classes for the AI orchestration pipeline
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class ProposalAIException(Exception):
    """Base exception for all Proposal AI exceptions"""
    def __init__(self, message: str, code: str = "PROPOSAL_AI_ERROR", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ProposalAIException):
    """Raised when request fields are missing or malformed"""
    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class ProviderError(ProposalAIException):
    """Base for failures tied to a specific AI provider"""
    def __init__(self, provider: str, message: str, code: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code, details)
        self.provider = provider


class AuthConfigError(ProviderError):
    """Raised when a provider API key is missing or has the wrong format. Never retried."""
    def __init__(self, provider: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            provider,
            message or f"{provider} API key is not configured",
            "AUTH_CONFIG_ERROR",
            details,
        )


class ProviderHTTPError(ProviderError):
    """Raised when a provider answers with a non-2xx status or an unreadable payload"""
    def __init__(self, provider: str, status: int, body: str, details: Optional[Dict[str, Any]] = None):
        message = f"{provider} API error: {status} - {body[:500]}"
        super().__init__(provider, message, f"{provider.upper()}_API_ERROR", details)
        self.status = status
        self.body = body


class ProviderTimeout(ProviderError):
    """Raised when a provider call exceeds its time budget"""
    def __init__(self, provider: str, timeout_seconds: float, details: Optional[Dict[str, Any]] = None):
        message = f"{_display_name(provider)} API timeout after {timeout_seconds:g} seconds"
        super().__init__(provider, message, "PROVIDER_TIMEOUT", details)
        self.timeout_seconds = timeout_seconds


class ParseError(ProposalAIException):
    """Raised by a single extraction strategy. Absorbed inside the response extractor."""
    def __init__(self, message: str, stage: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PARSE_ERROR", details)
        self.stage = stage


class QuotaExceededError(ProposalAIException):
    """Raised before any provider call when the user has no quota left"""
    def __init__(self, user_id: str, daily_exceeded: bool, monthly_exceeded: bool, details: Optional[Dict[str, Any]] = None):
        window = "daily" if daily_exceeded else "monthly"
        if daily_exceeded and monthly_exceeded:
            window = "daily and monthly"
        super().__init__(f"API {window} quota exceeded for user {user_id}", "QUOTA_EXCEEDED", details)
        self.user_id = user_id
        self.daily_exceeded = daily_exceeded
        self.monthly_exceeded = monthly_exceeded


class RateLimitExceededError(QuotaExceededError):
    """Raised before any provider call when the user is sending requests too fast"""
    def __init__(self, user_id: str, reason: str, retry_after_seconds: float, details: Optional[Dict[str, Any]] = None):
        ProposalAIException.__init__(
            self, f"Rate limit exceeded for user {user_id}: {reason}", "RATE_LIMITED", details
        )
        self.user_id = user_id
        self.daily_exceeded = False
        self.monthly_exceeded = False
        self.retry_after_seconds = retry_after_seconds


class StageTransitionError(ProposalAIException):
    """Raised when an analysis session transition guard refuses a move"""
    def __init__(self, current: str, target: str, reason: str, details: Optional[Dict[str, Any]] = None):
        message = f"Cannot move session from '{current}' to '{target}': {reason}"
        super().__init__(message, "STAGE_TRANSITION_ERROR", details)
        self.current = current
        self.target = target
        self.reason = reason


class ResourceNotFoundError(ProposalAIException):
    """Raised when a resource is not found"""
    def __init__(self, resource_type: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message, "NOT_FOUND", details)
        self.resource_type = resource_type
        self.resource_id = resource_id


def _display_name(provider: str) -> str:
    return {
        "openai": "OpenAI",
        "anthropic": "Anthropic",
        "google": "Google AI",
    }.get(provider, provider)


def status_code_for(error: ProposalAIException) -> int:
    """HTTP status code for a domain exception"""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, ResourceNotFoundError):
        return 404
    if isinstance(error, StageTransitionError):
        return 409
    if isinstance(error, QuotaExceededError):
        return 429
    return 500


def create_http_exception(error: ProposalAIException) -> HTTPException:
    """Convert a ProposalAIException to an HTTPException"""
    return HTTPException(
        status_code=status_code_for(error),
        detail={
            "code": error.code,
            "message": error.message,
            "details": error.details
        }
    )
