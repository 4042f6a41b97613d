"""
Tests for the provider adapters and registry.

Calls go through FakeSession so the wire format each adapter produces can be
inspected directly.
"""

import math

import pytest

from conftest import (
    ANTHROPIC_KEY,
    GOOGLE_KEY,
    OPENAI_KEY,
    FakeSession,
    anthropic_payload,
    google_payload,
    openai_payload,
)
from proposal_ai.core.api_keys import APIKeyManager
from proposal_ai.core.exceptions import (
    AuthConfigError,
    ProviderHTTPError,
    ProviderTimeout,
    ValidationError,
)
from proposal_ai.services.provider_adapter import (
    AnthropicResponse,
    CompletionRequest,
    GoogleResponse,
    OpenAIResponse,
    ProviderRegistry,
    normalize_response,
)
from proposal_ai.utils.timeout_handler import TimeoutConfig


def _build_registry(session, keys=None, timeouts=None):
    keys = keys or APIKeyManager(OPENAI_KEY, ANTHROPIC_KEY, GOOGLE_KEY)
    return ProviderRegistry(keys, session=session, timeouts=timeouts)


@pytest.mark.asyncio
async def test_openai_request_shape_and_reported_usage():
    session = FakeSession()
    session.queue(openai_payload("Hello there", prompt_tokens=7, completion_tokens=3))
    registry = _build_registry(session)

    completion = await registry.complete("openai", CompletionRequest(model="gpt-4o", prompt="Hi"))

    call = session.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == f"Bearer {OPENAI_KEY}"
    assert call["json"] == {
        "model": "gpt-4o",
        "messages": [{"role": "user", "content": "Hi"}],
        "max_tokens": 2000,
        "temperature": 0.7,
        "top_p": 1.0,
    }
    assert completion.content == "Hello there"
    assert completion.usage.input_tokens == 7
    assert completion.usage.output_tokens == 3
    assert completion.usage.total_tokens == 10
    assert not completion.usage.estimated
    assert completion.finish_reason == "stop"
    assert completion.provider == "openai"
    assert completion.model == "gpt-4o"


@pytest.mark.asyncio
async def test_anthropic_folds_system_prompt_and_estimates_usage():
    session = FakeSession()
    session.queue(anthropic_payload("Answer text"))
    registry = _build_registry(session)
    request = CompletionRequest(
        model="claude-3-5-sonnet-20241022",
        messages=[
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Summarize"},
        ],
        max_tokens=500,
    )

    completion = await registry.complete("anthropic", request)

    call = session.calls[0]
    assert call["headers"]["x-api-key"] == ANTHROPIC_KEY
    assert call["headers"]["anthropic-version"] == "2023-06-01"
    assert call["json"]["messages"] == [{"role": "user", "content": "Be brief.\n\nSummarize"}]
    assert call["json"]["max_tokens"] == 500
    assert completion.finish_reason == "end_turn"
    assert completion.usage.estimated
    assert completion.usage.output_tokens == math.ceil(len("Answer text") / 3.5)
    assert completion.usage.input_tokens == math.ceil(len("Be brief.\nSummarize") / 3.5)


@pytest.mark.asyncio
async def test_google_maps_roles_and_lowercases_finish_reason():
    session = FakeSession()
    session.queue(google_payload("Gemini says hi"))
    registry = _build_registry(session)
    request = CompletionRequest(
        model="gemini-1.5-pro",
        messages=[
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi"},
            {"role": "user", "content": "Again"},
        ],
        temperature=0.2,
    )

    completion = await registry.complete("google", request)

    call = session.calls[0]
    assert call["url"].endswith("/models/gemini-1.5-pro:generateContent")
    assert call["params"] == {"key": GOOGLE_KEY}
    assert [c["role"] for c in call["json"]["contents"]] == ["user", "model", "user"]
    assert call["json"]["generationConfig"]["temperature"] == 0.2
    assert completion.content == "Gemini says hi"
    assert completion.finish_reason == "stop"
    assert completion.usage.estimated


@pytest.mark.asyncio
async def test_non_2xx_raises_provider_http_error():
    session = FakeSession()
    session.queue({"error": {"message": "rate limited"}}, status=429)
    registry = _build_registry(session)

    with pytest.raises(ProviderHTTPError) as exc_info:
        await registry.complete("openai", CompletionRequest(model="gpt-4o", prompt="Hi"))

    assert exc_info.value.status == 429
    assert exc_info.value.code == "OPENAI_API_ERROR"
    assert "rate limited" in exc_info.value.message


@pytest.mark.asyncio
async def test_unexpected_payload_raises_provider_http_error():
    session = FakeSession()
    session.queue({"unexpected": True})
    registry = _build_registry(session)

    with pytest.raises(ProviderHTTPError) as exc_info:
        await registry.complete("anthropic", CompletionRequest(model="claude-3-haiku-20240307", prompt="Hi"))
    assert exc_info.value.status == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 502])
async def test_undecodable_body_raises_provider_http_error(status):
    session = FakeSession()
    session.queue(b"\xff\xfe<html>bad gateway\x80</html>", status=status)
    registry = _build_registry(session)

    with pytest.raises(ProviderHTTPError) as exc_info:
        await registry.complete("openai", CompletionRequest(model="gpt-4o", prompt="Hi"))

    assert exc_info.value.status == status
    assert "bad gateway" in exc_info.value.body


@pytest.mark.asyncio
async def test_slow_provider_raises_timeout():
    session = FakeSession()
    session.queue(openai_payload("late"), delay=0.5)
    registry = _build_registry(session, timeouts=TimeoutConfig({"completion": 0.05}))

    with pytest.raises(ProviderTimeout) as exc_info:
        await registry.complete("openai", CompletionRequest(model="gpt-4o", prompt="Hi"))

    assert exc_info.value.provider == "openai"
    assert exc_info.value.message == "OpenAI API timeout after 0.05 seconds"


@pytest.mark.asyncio
async def test_operation_selects_time_budget():
    session = FakeSession()
    session.queue(openai_payload("done"))
    registry = _build_registry(session, timeouts=TimeoutConfig({"analysis": 90}))

    await registry.complete("openai", CompletionRequest(model="gpt-4o", prompt="Hi"), operation="analysis")

    assert session.calls[0]["timeout"].total == 90


@pytest.mark.asyncio
async def test_missing_key_fails_before_any_http_call():
    session = FakeSession()
    registry = _build_registry(session, keys=APIKeyManager(openai_key=OPENAI_KEY))

    with pytest.raises(AuthConfigError) as exc_info:
        await registry.complete("google", CompletionRequest(model="gemini-1.5-pro", prompt="Hi"))

    assert exc_info.value.details["availableKeys"] == ["openai"]
    assert session.calls == []


def test_unsupported_provider():
    registry = _build_registry(FakeSession())
    with pytest.raises(ValidationError):
        registry.get("cohere")
    assert registry.get("OpenAI").provider == "openai"


@pytest.mark.asyncio
async def test_registry_does_not_close_injected_session():
    session = FakeSession()
    registry = _build_registry(session)
    await registry.close()
    assert not session.closed


def test_normalize_response_per_kind():
    request = CompletionRequest(model="m", prompt="abcdefgh")

    openai = normalize_response(OpenAIResponse("out", None), request, 5)
    assert openai.finish_reason == "stop"
    assert openai.usage.estimated
    assert openai.usage.input_tokens == 2

    anthropic = normalize_response(AnthropicResponse("out", "max_tokens"), request, 5)
    assert anthropic.finish_reason == "max_tokens"

    google = normalize_response(GoogleResponse("out", "MAX_TOKENS"), request, 5)
    assert google.finish_reason == "max_tokens"
    assert google.response_time_ms == 5


def test_completion_request_messages_take_precedence():
    request = CompletionRequest(model="m", prompt="ignored", messages=[{"role": "user", "content": "used"}])
    assert request.as_messages() == [{"role": "user", "content": "used"}]
    assert request.input_text() == "used"
