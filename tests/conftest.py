"""Shared test fixtures for the AI provider router tests."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

from ai_router.config import RouterConfig, load_config
from ai_router.orchestrator import FallbackOrchestrator
from ai_router.provider import HealthStatus, ProviderRequest, ProviderResult
from ai_router.state import OrchestratorState
from ai_router.usage import UsageLogEntry


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal three-provider test config and return its path."""
    config = {
        "providers": {
            "p1": {
                "base_url": "https://p1.example.com/v1",
                "api_key_env": "P1_API_KEY",
                "default_model": "p1-model",
                "tier": 1,
                "rate_limit": {"requests_per_minute": 5},
            },
            "p2": {
                "base_url": "https://p2.example.com/v1",
                "api_key_env": "P2_API_KEY",
                "default_model": "p2-model",
                "tier": 2,
                "rate_limit": {"requests_per_hour": 100},
            },
            "p3": {
                "base_url": "https://p3.example.com/v1",
                "api_key_env": "P3_API_KEY",
                "default_model": "p3-model",
                "tier": 3,
            },
        },
        "fallback_chains": {
            "time_sensitive": ["p2", "p1", "p3"],
            "app_data": ["p1", "p2", "p3"],
            "general": ["p1", "p2", "p3"],
        },
        "retry": {
            "max_retries": 3,
            "initial_backoff_ms": 250,
            "call_timeout_seconds": 1,
        },
        "cache": {"ttl_seconds": 300, "max_size": 100},
        "usage_log": {
            "path": str(tmp_path / "usage.jsonl"),
            "batch_size": 10,
            "flush_interval_seconds": 30,
            "max_backlog": 50,
        },
        "health_check": {"interval_seconds": 300, "timeout_seconds": 1},
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


Outcome = Union[Exception, ProviderResult]


class FakeProvider:
    """Scripted provider: pops one outcome per call, succeeds when the script is empty."""

    def __init__(
        self,
        name: str,
        script: Optional[List[Outcome]] = None,
        always: Optional[Exception] = None,
        health: Optional[HealthStatus] = None,
    ) -> None:
        self.name = name
        self.script = list(script or [])
        self.always = always
        self.health = health or HealthStatus(healthy=True, response_time_ms=3)
        self.calls: List[ProviderRequest] = []
        self.health_calls = 0

    async def chat(self, request: ProviderRequest) -> ProviderResult:
        self.calls.append(request)
        if self.always is not None:
            raise self.always
        outcome = self.script.pop(0) if self.script else self.success()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def health_check(self) -> HealthStatus:
        self.health_calls += 1
        return self.health

    def success(self) -> ProviderResult:
        return ProviderResult(
            content="answer from {}".format(self.name),
            model_used="{}-model".format(self.name),
            tokens_in=10,
            tokens_out=20,
            latency_ms=5,
        )


class MemoryUsageStore:
    """UsageStore that keeps flushed entries in a list, optionally failing."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.entries: List[UsageLogEntry] = []
        self.writes = 0

    def write_batch(self, entries: List[UsageLogEntry]) -> None:
        self.writes += 1
        if self.fail:
            raise OSError("store unavailable")
        self.entries.extend(entries)


@dataclass
class Harness:
    """An orchestrator wired to fakes, plus what the fakes observed."""

    orchestrator: FallbackOrchestrator
    state: OrchestratorState
    store: MemoryUsageStore
    sleeps: List[float] = field(default_factory=list)

    def usage_entries(self) -> List[UsageLogEntry]:
        self.state.usage.flush()
        return self.store.entries


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(test_config_path: str) -> RouterConfig:
    """Return a loaded test RouterConfig."""
    return load_config(test_config_path)


@pytest.fixture()
def fake_provider() -> type:
    """Return the FakeProvider class."""
    return FakeProvider


@pytest.fixture()
def memory_store() -> type:
    """Return the MemoryUsageStore class."""
    return MemoryUsageStore


@pytest.fixture()
def build_harness(test_config: RouterConfig) -> Callable[..., Harness]:
    """Return a factory that wires fake providers into an orchestrator.

    Backoff sleeps are recorded instead of awaited.
    """

    def _build(providers: Dict[str, FakeProvider], **kwargs) -> Harness:
        store = MemoryUsageStore()
        state = OrchestratorState.from_config(
            test_config, providers=dict(providers), usage_store=store
        )
        sleeps: List[float] = []

        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        orchestrator = FallbackOrchestrator(state, sleep=record_sleep, **kwargs)
        return Harness(orchestrator=orchestrator, state=state, store=store, sleeps=sleeps)

    return _build
