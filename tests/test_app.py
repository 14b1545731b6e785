"""Smoke tests for the HTTP surface.

Tests cover the chat endpoint's happy path and degraded path, the provider
status report, and request validation errors.
"""

from typing import Dict

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ai_router import app as app_module
from ai_router.app import create_app
from ai_router.config import RouterConfig
from ai_router.orchestrator import NO_PROVIDERS_MESSAGE, FallbackOrchestrator
from ai_router.provider import TransientProviderError
from ai_router.state import OrchestratorState


def _make_request_body(message: str = "Mera physics progress kaisa hai?") -> Dict:
    return {"user_id": "student-1", "conversation_id": "conv-1", "message": message}


def _client(application: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=application), base_url="http://test")


@pytest.fixture()
def wired_app(test_config: RouterConfig, fake_provider: type) -> FastAPI:
    providers = {name: fake_provider(name) for name in ("p1", "p2", "p3")}
    state = OrchestratorState.from_config(test_config, providers=providers)
    return create_app(FallbackOrchestrator(state))


@pytest.mark.asyncio
async def test_chat_happy_path(wired_app: FastAPI) -> None:
    async with _client(wired_app) as client:
        resp = await client.post("/v1/chat", json=_make_request_body())

    assert resp.status_code == 200
    data = resp.json()
    assert data["id"].startswith("req-")
    assert data["category"] == "app_data"
    assert data["provider_used"] == "p1"
    assert data["tier_used"] == 1
    assert data["cached"] is False
    assert data["fallback_used"] is False
    assert data["tokens_used"] == {"input": 10, "output": 20}


@pytest.mark.asyncio
async def test_repeat_request_is_cached(wired_app: FastAPI) -> None:
    async with _client(wired_app) as client:
        await client.post("/v1/chat", json=_make_request_body())
        resp = await client.post("/v1/chat", json=_make_request_body())

    assert resp.status_code == 200
    assert resp.json()["cached"] is True


@pytest.mark.asyncio
async def test_exhausted_chain_still_returns_200(
    test_config: RouterConfig, fake_provider: type
) -> None:
    providers = {
        name: fake_provider(name, always=TransientProviderError(name, "HTTP 503"))
        for name in ("p1", "p2", "p3")
    }
    state = OrchestratorState.from_config(test_config, providers=providers)

    async def no_sleep(delay: float) -> None:
        return None

    application = create_app(FallbackOrchestrator(state, sleep=no_sleep))
    async with _client(application) as client:
        resp = await client.post("/v1/chat", json=_make_request_body("explain gravity"))

    assert resp.status_code == 200
    data = resp.json()
    assert data["provider_used"] == "system"
    assert data["model_used"] == "graceful_degradation"
    assert data["tier_used"] == 0
    assert data["fallback_used"] is True


@pytest.mark.asyncio
async def test_missing_api_keys_degrade_from_config(
    test_config_path: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Without keys every provider fails permanently on first use."""
    for env in ("P1_API_KEY", "P2_API_KEY", "P3_API_KEY"):
        monkeypatch.delenv(env, raising=False)
    monkeypatch.setattr(app_module, "CONFIG_PATH", test_config_path)

    application = create_app()
    async with _client(application) as client:
        resp = await client.post("/v1/chat", json=_make_request_body())
        status = await client.get("/v1/providers")

    assert resp.status_code == 200
    data = resp.json()
    assert data["provider_used"] == "system"
    assert data["content"] == NO_PROVIDERS_MESSAGE
    assert "API keys" in data["content"]
    assert status.json()["healthy_count"] == 0


@pytest.mark.asyncio
async def test_providers_report(wired_app: FastAPI) -> None:
    async with _client(wired_app) as client:
        await client.post("/v1/chat", json=_make_request_body())
        resp = await client.get("/v1/providers")

    assert resp.status_code == 200
    data = resp.json()
    assert [p["id"] for p in data["providers"]] == ["p1", "p2", "p3"]
    assert data["healthy_count"] == 3
    p1 = data["providers"][0]
    assert p1["rate_limit"]["usage"] == 1
    assert p1["rate_limit"]["limit"] == 5
    assert data["cache"]["size"] == 1
    assert data["usage_pending"] == 1


@pytest.mark.asyncio
async def test_health(wired_app: FastAPI) -> None:
    async with _client(wired_app) as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_missing_message_is_validation_error(wired_app: FastAPI) -> None:
    async with _client(wired_app) as client:
        resp = await client.post("/v1/chat", json={"user_id": "student-1"})

    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "validation_error"


@pytest.mark.asyncio
async def test_missing_user_id_is_validation_error(wired_app: FastAPI) -> None:
    async with _client(wired_app) as client:
        resp = await client.post("/v1/chat", json={"message": "hi"})

    assert resp.status_code == 422
