"""
Process-wide service registry and FastAPI dependency functions.

The registry is built once in the application lifespan and stored on
app.state; request handlers receive services through the getters below.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import uuid

import aiohttp
from fastapi import Request

from proposal_ai.abstractions.store import InMemoryStore, KeyValueStore, SupabaseStore
from proposal_ai.core.api_keys import APIKeyManager
from proposal_ai.core.database import SupabaseService
from proposal_ai.services.completion_service import CompletionService
from proposal_ai.services.context_cache import ContextCache
from proposal_ai.services.prompt_engine import PromptEngine
from proposal_ai.services.provider_adapter import ProviderRegistry
from proposal_ai.services.question_service import QuestionService
from proposal_ai.services.quota_governor import QuotaGovernor
from proposal_ai.services.session_state_machine import (
    AnalysisSessionStateMachine,
    ProgressWeights,
    RegenerationPolicy,
)
from proposal_ai.utils.rate_limiter import RateLimiter
from proposal_ai.utils.timeout_handler import TimeoutConfig

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    settings: object
    store: KeyValueStore
    api_keys: APIKeyManager
    providers: ProviderRegistry
    quota: QuotaGovernor
    completion: CompletionService
    questions: QuestionService
    context_cache: ContextCache
    prompt_engine: PromptEngine
    sessions: AnalysisSessionStateMachine

    async def close(self):
        await self.providers.close()


def create_store(settings) -> KeyValueStore:
    """Supabase tables when configured and selected, otherwise process memory"""
    if settings.STORE_BACKEND == "supabase":
        client = SupabaseService(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY).get_client()
        if client is not None:
            logger.info("Using Supabase store")
            return SupabaseStore(client)
        logger.warning("STORE_BACKEND=supabase but Supabase is not configured; using in-memory store")
    return InMemoryStore()


def build_services(
    settings,
    store: Optional[KeyValueStore] = None,
    http_session: Optional[aiohttp.ClientSession] = None,
    api_keys: Optional[APIKeyManager] = None,
) -> ServiceRegistry:
    store = store or create_store(settings)
    api_keys = api_keys or APIKeyManager.from_settings(settings)
    providers = ProviderRegistry(api_keys, session=http_session, timeouts=TimeoutConfig.from_settings(settings))
    quota = QuotaGovernor(store, rate_limiter=RateLimiter() if settings.RATE_LIMIT_ENABLED else None)
    prompt_engine = PromptEngine()
    completion = CompletionService(providers, quota)
    questions = QuestionService(completion, prompt_engine)
    context_cache = ContextCache(
        max_size=settings.CONTEXT_CACHE_MAX_SIZE,
        ttl_seconds=settings.CONTEXT_CACHE_TTL_SECONDS,
    )
    sessions = AnalysisSessionStateMachine(
        store,
        completion,
        questions,
        context_cache,
        prompt_engine=prompt_engine,
        weights=ProgressWeights.from_settings(settings),
        regeneration_policy=RegenerationPolicy(settings.REGENERATE_STATIC_QUESTIONS),
    )
    return ServiceRegistry(
        settings=settings,
        store=store,
        api_keys=api_keys,
        providers=providers,
        quota=quota,
        completion=completion,
        questions=questions,
        context_cache=context_cache,
        prompt_engine=prompt_engine,
        sessions=sessions,
    )


# Dependency injection functions for FastAPI
def get_request_id(request: Request) -> str:
    """Extract or generate request ID"""
    request_id = request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
        logger.debug(f"Generated request ID: {request_id}")
    return request_id


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services


def get_completion_service(request: Request) -> CompletionService:
    return get_services(request).completion


def get_question_service(request: Request) -> QuestionService:
    return get_services(request).questions


def get_quota_governor(request: Request) -> QuotaGovernor:
    return get_services(request).quota


def get_session_machine(request: Request) -> AnalysisSessionStateMachine:
    return get_services(request).sessions
