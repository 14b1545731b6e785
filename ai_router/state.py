"""Process-wide orchestration state.

Owns the provider registry, health records, rate-limit windows, response
cache and usage logger. Built once at startup and injected wherever it is
needed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ai_router.cache import ResponseCache
from ai_router.config import RouterConfig
from ai_router.health import ProviderHealthRegistry
from ai_router.limiter import RateLimitTracker
from ai_router.provider import Provider, build_providers
from ai_router.usage import JsonlUsageStore, UsageLogger, UsageStore

_logger = logging.getLogger("ai_router")


@dataclass
class OrchestratorState:
    """Shared mutable state consulted by every request."""

    config: RouterConfig
    providers: Dict[str, Provider]
    health: ProviderHealthRegistry
    limiter: RateLimitTracker
    cache: ResponseCache
    usage: UsageLogger

    @classmethod
    def from_config(
        cls,
        config: RouterConfig,
        providers: Optional[Dict[str, Provider]] = None,
        usage_store: Optional[UsageStore] = None,
    ) -> "OrchestratorState":
        """Build state from configuration.

        Args:
            config: The loaded router configuration.
            providers: Provider instances keyed by id. Defaults to one
                OpenAI-compatible client per configured provider.
            usage_store: Destination for usage entries. Defaults to the
                configured JSONL file.
        """
        if providers is None:
            providers = build_providers(config)
        if usage_store is None:
            usage_store = JsonlUsageStore(config.usage_log.path)

        return cls(
            config=config,
            providers=providers,
            health=ProviderHealthRegistry.from_config(config),
            limiter=RateLimitTracker(
                rules={
                    name: prov.rate_limit
                    for name, prov in config.providers.items()
                    if prov.rate_limit is not None
                }
            ),
            cache=ResponseCache(
                ttl_seconds=config.cache.ttl_seconds,
                max_size=config.cache.max_size,
            ),
            usage=UsageLogger(
                usage_store,
                batch_size=config.usage_log.batch_size,
                flush_interval=config.usage_log.flush_interval_seconds,
                max_backlog=config.usage_log.max_backlog,
            ),
        )

    async def run_maintenance(self) -> None:
        """Run health checks when due and purge stale rate-limit windows."""
        await self.health.check_all_if_due(self.providers)
        removed = self.limiter.cleanup()
        if removed:
            _logger.info("Dropped %d idle rate-limit windows", removed)

    async def maintenance_loop(self, interval: float = 60.0) -> None:
        while True:
            try:
                await self.run_maintenance()
            except Exception:
                _logger.exception("Maintenance pass failed")
            await asyncio.sleep(interval)
