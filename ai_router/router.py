"""Routing: resolve a query category to an ordered provider attempt list.

The router looks up the category's fallback chain in the configuration,
sorts it by tier, drops unhealthy providers, and moves an explicitly
preferred provider to the front.
"""

from typing import List, Optional

from ai_router.config import ChainEntry, RouterConfig
from ai_router.health import ProviderHealthRegistry
from ai_router.models import QueryCategory


def build_attempt_order(
    config: RouterConfig,
    category: QueryCategory,
    health: ProviderHealthRegistry,
    preferred_provider: Optional[str] = None,
) -> List[ChainEntry]:
    """Build the provider attempt order for a category.

    Args:
        config: The loaded router configuration.
        category: The classified query category.
        health: Registry used to filter out unhealthy providers.
        preferred_provider: Provider the caller asked for, if any. It is
            placed first even when it is absent from the chain or currently
            unhealthy; the orchestrator's skip-check still applies to it.

    Returns:
        Chain entries in the order they should be attempted.
    """
    chain = sorted(config.chain_for(category.value), key=lambda e: e.tier)

    order: List[ChainEntry] = []
    seen = set()
    for entry in chain:
        if entry.provider in seen or not health.is_healthy(entry.provider):
            continue
        seen.add(entry.provider)
        order.append(entry)

    if preferred_provider:
        chain_tiers = {e.provider: e.tier for e in chain}
        preferred = ChainEntry(
            provider=preferred_provider,
            tier=chain_tiers.get(preferred_provider, health.tier(preferred_provider)),
        )
        order = [preferred] + [e for e in order if e.provider != preferred_provider]

    return order
