"""
Provider adapters for OpenAI, Anthropic and Google AI over raw HTTP.

Each adapter maps a provider-neutral CompletionRequest onto the vendor's wire
format, parses the vendor payload into a tagged ProviderResponse and
normalizes it into a ProviderCompletion before returning. Nothing outside this
module sees a vendor-shaped payload.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

import aiohttp

from proposal_ai.core.api_keys import APIKeyManager, SUPPORTED_PROVIDERS
from proposal_ai.core.exceptions import ProviderHTTPError, ValidationError
from proposal_ai.services.pricing import TokenEstimator
from proposal_ai.utils.timeout_handler import TimeoutConfig, run_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 1.0


@dataclass
class CompletionRequest:
    """Provider-neutral completion request. Either prompt or messages must be set."""
    model: str
    prompt: Optional[str] = None
    messages: Optional[List[Dict[str, str]]] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P

    def as_messages(self) -> List[Dict[str, str]]:
        if self.messages:
            return [
                {"role": str(m.get("role", "user")), "content": str(m.get("content", ""))}
                for m in self.messages
            ]
        return [{"role": "user", "content": self.prompt or ""}]

    def input_text(self) -> str:
        """All prompt text, used for token estimation"""
        if self.messages:
            return "\n".join(m["content"] for m in self.as_messages())
        return self.prompt or ""


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    estimated: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ProviderCompletion:
    """Neutral completion result shared by every provider"""
    content: str
    usage: TokenUsage
    finish_reason: str
    model: str
    provider: str
    response_time_ms: int = 0


# ── Tagged provider payloads ──────────────────────────────────────────

@dataclass(frozen=True)
class OpenAIResponse:
    content: str
    finish_reason: Optional[str]
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    kind: Literal["openai"] = "openai"


@dataclass(frozen=True)
class AnthropicResponse:
    content: str
    stop_reason: Optional[str]
    kind: Literal["anthropic"] = "anthropic"


@dataclass(frozen=True)
class GoogleResponse:
    content: str
    finish_reason: Optional[str]
    kind: Literal["google"] = "google"


ProviderResponse = Union[OpenAIResponse, AnthropicResponse, GoogleResponse]


def normalize_response(response: ProviderResponse, request: CompletionRequest, elapsed_ms: int) -> ProviderCompletion:
    """Collapse a tagged provider payload into the neutral completion type"""
    if response.kind == "openai":
        if response.prompt_tokens is not None and response.completion_tokens is not None:
            usage = TokenUsage(response.prompt_tokens, response.completion_tokens)
        else:
            usage = _estimate_usage("openai", request, response.content)
        finish_reason = response.finish_reason or "stop"
    elif response.kind == "anthropic":
        usage = _estimate_usage("anthropic", request, response.content)
        finish_reason = response.stop_reason or "stop"
    elif response.kind == "google":
        usage = _estimate_usage("google", request, response.content)
        finish_reason = (response.finish_reason or "stop").lower()
    else:
        raise ValueError(f"Unknown provider response kind: {response.kind}")

    return ProviderCompletion(
        content=response.content,
        usage=usage,
        finish_reason=finish_reason,
        model=request.model,
        provider=response.kind,
        response_time_ms=elapsed_ms,
    )


def _estimate_usage(provider: str, request: CompletionRequest, content: str) -> TokenUsage:
    return TokenUsage(
        input_tokens=TokenEstimator.estimate(request.input_text(), provider),
        output_tokens=TokenEstimator.estimate(content, provider),
        estimated=True,
    )


def _fold_system_messages(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Prepend system content to the first user turn for APIs without a system role in messages"""
    system_parts = [m["content"] for m in messages if m["role"] == "system" and m["content"]]
    turns = [dict(m) for m in messages if m["role"] != "system"]
    if not system_parts:
        return turns
    system_text = "\n\n".join(system_parts)
    for turn in turns:
        if turn["role"] == "user":
            turn["content"] = f"{system_text}\n\n{turn['content']}"
            return turns
    return [{"role": "user", "content": system_text}] + turns


@dataclass
class HTTPCall:
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    params: Dict[str, str] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Base adapter: key lookup, timed HTTP POST, status handling and normalization"""

    provider: str = ""

    def __init__(self, api_keys: APIKeyManager, registry: "ProviderRegistry", timeout_seconds: float = TimeoutConfig.DEFAULT_TIMEOUT):
        self.api_keys = api_keys
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def build_call(self, request: CompletionRequest, api_key: str) -> HTTPCall:
        """Map the neutral request onto the provider wire format"""

    @abstractmethod
    def parse_payload(self, payload: Dict[str, Any]) -> ProviderResponse:
        """Read the provider's success payload into its tagged response type"""

    async def complete(self, request: CompletionRequest, timeout_seconds: Optional[float] = None) -> ProviderCompletion:
        api_key = self.api_keys.require_key(self.provider)
        timeout_seconds = timeout_seconds or self.timeout_seconds
        call = self.build_call(request, api_key)

        logger.info(
            f"[PROVIDER] {self.provider} request: model={request.model} "
            f"input_chars={len(request.input_text()):,} max_tokens={request.max_tokens} timeout={timeout_seconds:g}s"
        )

        start = time.monotonic()
        status, text = await run_with_timeout(
            self._post(call, timeout_seconds), timeout_seconds, self.provider
        )
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if not 200 <= status < 300:
            logger.error(f"[PROVIDER] {self.provider} HTTP {status}: {text[:300]}")
            raise ProviderHTTPError(self.provider, status, text)

        try:
            payload = json.loads(text)
            response = self.parse_payload(payload)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"[PROVIDER] {self.provider} returned an unexpected payload: {e}")
            raise ProviderHTTPError(self.provider, status, text, details={"reason": str(e)})

        completion = normalize_response(response, request, elapsed_ms)
        logger.info(
            f"[PROVIDER] {self.provider} response: {completion.usage.total_tokens} tokens "
            f"(estimated={completion.usage.estimated}) finish={completion.finish_reason} in {elapsed_ms}ms"
        )
        return completion

    async def _post(self, call: HTTPCall, timeout_seconds: float) -> Tuple[int, str]:
        session = await self.registry.get_session()
        try:
            async with session.post(
                call.url,
                json=call.body,
                headers=call.headers,
                params=call.params or None,
                timeout=aiohttp.ClientTimeout(total=timeout_seconds)
            ) as response:
                return response.status, await response.text(errors="replace")
        except asyncio.TimeoutError:
            # aiohttp timeouts surface as ProviderTimeout in run_with_timeout
            raise
        except aiohttp.ClientError as e:
            # No HTTP status was received
            raise ProviderHTTPError(self.provider, 0, f"connection error: {e}")


class AnthropicAdapter(ProviderAdapter):
    provider = "anthropic"
    URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def build_call(self, request: CompletionRequest, api_key: str) -> HTTPCall:
        return HTTPCall(
            url=self.URL,
            headers={
                "x-api-key": api_key,
                "Content-Type": "application/json",
                "anthropic-version": self.API_VERSION,
            },
            body={
                "model": request.model,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "top_p": request.top_p,
                "messages": _fold_system_messages(request.as_messages()),
            },
        )

    def parse_payload(self, payload: Dict[str, Any]) -> AnthropicResponse:
        return AnthropicResponse(
            content=payload["content"][0]["text"],
            stop_reason=payload.get("stop_reason"),
        )


class OpenAIAdapter(ProviderAdapter):
    provider = "openai"
    URL = "https://api.openai.com/v1/chat/completions"

    def build_call(self, request: CompletionRequest, api_key: str) -> HTTPCall:
        return HTTPCall(
            url=self.URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            body={
                "model": request.model,
                "messages": request.as_messages(),
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "top_p": request.top_p,
            },
        )

    def parse_payload(self, payload: Dict[str, Any]) -> OpenAIResponse:
        choice = payload["choices"][0]
        usage = payload.get("usage") or {}
        return OpenAIResponse(
            content=choice["message"]["content"] or "",
            finish_reason=choice.get("finish_reason"),
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )


class GoogleAdapter(ProviderAdapter):
    provider = "google"
    URL_TEMPLATE = "https://generativelanguage.googleapis.com/v1/models/{model}:generateContent"

    def build_call(self, request: CompletionRequest, api_key: str) -> HTTPCall:
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in _fold_system_messages(request.as_messages())
        ]
        return HTTPCall(
            url=self.URL_TEMPLATE.format(model=request.model),
            headers={"Content-Type": "application/json"},
            params={"key": api_key},
            body={
                "contents": contents,
                "generationConfig": {
                    "maxOutputTokens": request.max_tokens,
                    "temperature": request.temperature,
                    "topP": request.top_p,
                },
            },
        )

    def parse_payload(self, payload: Dict[str, Any]) -> GoogleResponse:
        candidate = payload["candidates"][0]
        return GoogleResponse(
            content=candidate["content"]["parts"][0]["text"],
            finish_reason=candidate.get("finishReason"),
        )


class ProviderRegistry:
    """
    Owns the shared HTTP session and one adapter per provider.
    Built once at application startup and injected where needed.
    """

    ADAPTERS = {
        "openai": OpenAIAdapter,
        "anthropic": AnthropicAdapter,
        "google": GoogleAdapter,
    }

    def __init__(self, api_keys: APIKeyManager, session: Optional[aiohttp.ClientSession] = None,
                 timeouts: Optional[TimeoutConfig] = None):
        self.api_keys = api_keys
        self.session = session
        self._owns_session = session is None
        self.timeouts = timeouts or TimeoutConfig()
        self._adapters: Dict[str, ProviderAdapter] = {
            name: cls(api_keys, self, self.timeouts.get_timeout("completion"))
            for name, cls in self.ADAPTERS.items()
        }

    async def get_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is initialized"""
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self.session

    def get(self, provider: str) -> ProviderAdapter:
        provider = (provider or "").lower()
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ValidationError(
                f"Unsupported provider: {provider}. Expected one of {', '.join(SUPPORTED_PROVIDERS)}",
                field="provider",
            )
        return adapter

    async def complete(self, provider: str, request: CompletionRequest, operation: str = "completion") -> ProviderCompletion:
        """Run a completion with the time budget configured for the operation"""
        return await self.get(provider).complete(request, self.timeouts.get_timeout(operation))

    async def close(self):
        """Close the session if this registry created it"""
        if self.session is not None and self._owns_session:
            await self.session.close()
        self.session = None
