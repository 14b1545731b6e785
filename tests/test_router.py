"""Tests for fallback chain resolution."""

from ai_router.config import RouterConfig
from ai_router.health import ProviderHealthRegistry
from ai_router.models import QueryCategory
from ai_router.router import build_attempt_order


def _providers(order) -> list:
    return [(e.provider, e.tier) for e in order]


def test_chain_sorted_by_tier(test_config: RouterConfig) -> None:
    health = ProviderHealthRegistry.from_config(test_config)
    order = build_attempt_order(test_config, QueryCategory.TIME_SENSITIVE, health)
    assert _providers(order) == [("p2", 1), ("p1", 2), ("p3", 3)]


def test_unhealthy_providers_filtered(test_config: RouterConfig) -> None:
    health = ProviderHealthRegistry.from_config(test_config)
    health.mark_unhealthy("p1")
    order = build_attempt_order(test_config, QueryCategory.APP_DATA, health)
    assert [e.provider for e in order] == ["p2", "p3"]


def test_preferred_provider_moved_to_front(test_config: RouterConfig) -> None:
    health = ProviderHealthRegistry.from_config(test_config)
    order = build_attempt_order(test_config, QueryCategory.APP_DATA, health, "p3")
    assert _providers(order) == [("p3", 3), ("p1", 1), ("p2", 2)]


def test_preferred_provider_outside_chain_prepended(test_config: RouterConfig) -> None:
    health = ProviderHealthRegistry.from_config(test_config)
    order = build_attempt_order(test_config, QueryCategory.GENERAL, health, "custom")
    assert [e.provider for e in order] == ["custom", "p1", "p2", "p3"]


def test_unhealthy_preferred_provider_still_first(test_config: RouterConfig) -> None:
    """The orchestrator's skip-check, not the router, decides to skip it."""
    health = ProviderHealthRegistry.from_config(test_config)
    health.mark_unhealthy("p2")
    order = build_attempt_order(test_config, QueryCategory.GENERAL, health, "p2")
    assert [e.provider for e in order] == ["p2", "p1", "p3"]
