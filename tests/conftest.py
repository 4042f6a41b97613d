"""
Pytest fixtures for the AI orchestration pipeline.

No test touches the network: provider calls go through FakeSession, which
mimics the small part of aiohttp.ClientSession the adapters use.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import pytest
from fastapi.testclient import TestClient

from proposal_ai.abstractions.store import InMemoryStore
from proposal_ai.core.api_keys import APIKeyManager
from proposal_ai.core.config import Settings
from proposal_ai.core.dependencies import build_services


OPENAI_KEY = "sk-test-openai-0123456789"
ANTHROPIC_KEY = "sk-ant-test-0123456789"
GOOGLE_KEY = "AIzaTestGoogleKey0123456789"


def openai_payload(content: str, prompt_tokens: int = 12, completion_tokens: int = 34,
                   finish_reason: str = "stop") -> Dict[str, Any]:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def anthropic_payload(content: str, stop_reason: str = "end_turn") -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": content}], "stop_reason": stop_reason}


def google_payload(content: str, finish_reason: str = "STOP") -> Dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": content}]}, "finishReason": finish_reason}]}


class FakeResponse:
    def __init__(self, status: int, body: Union[str, bytes], delay: float = 0.0):
        self.status = status
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self._delay = delay

    async def text(self, encoding: str = "utf-8", errors: str = "strict") -> str:
        return self._body.decode(encoding, errors)

    async def __aenter__(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Queue of canned responses returned in order by post()"""

    def __init__(self):
        self.responses: List[FakeResponse] = []
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, payload: Any, status: int = 200, delay: float = 0.0):
        body = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        self.responses.append(FakeResponse(status, body, delay))

    def post(self, url, json=None, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "params": params, "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"Unexpected provider call to {url}")
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


class FixedClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 15, 10, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def api_keys():
    return APIKeyManager(openai_key=OPENAI_KEY, anthropic_key=ANTHROPIC_KEY, google_key=GOOGLE_KEY)


@pytest.fixture
def test_settings():
    return Settings(
        ENVIRONMENT="test",
        DEBUG=False,
        STORE_BACKEND="memory",
        OPENAI_API_KEY=None,
        ANTHROPIC_API_KEY=None,
        GOOGLE_AI_API_KEY=None,
    )


@pytest.fixture
def make_services(test_settings, store, fake_session, clock):
    def _make(keys: Optional[APIKeyManager] = None, settings=None):
        services = build_services(
            settings or test_settings,
            store=store,
            http_session=fake_session,
            api_keys=keys or APIKeyManager(OPENAI_KEY, ANTHROPIC_KEY, GOOGLE_KEY),
        )
        services.quota.clock = clock
        return services

    return _make


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def make_client(test_settings, make_services):
    from proposal_ai.main import create_app

    def _make(keys: Optional[APIKeyManager] = None) -> TestClient:
        app = create_app(test_settings, make_services(keys))
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client()
