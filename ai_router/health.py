"""Provider health bookkeeping.

One ProviderRecord per known provider lives for the whole process. Records
are flipped unhealthy immediately on credential failures and restored by
periodic health checks. Overlapping full sweeps are prevented by a single
re-entrancy guard.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from ai_router.config import RouterConfig
from ai_router.provider import HealthStatus, Provider

_logger = logging.getLogger("ai_router")


@dataclass
class ProviderRecord:
    """Health state of a single provider."""

    id: str
    tier: int
    healthy: bool = True
    last_check: float = 0.0
    latency_ms: int = 0
    last_error: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "tier": self.tier,
            "healthy": self.healthy,
            "last_check": self.last_check,
            "latency_ms": self.latency_ms,
            "last_error": self.last_error,
        }


class ProviderHealthRegistry:
    """Process-wide table of provider health records."""

    def __init__(
        self,
        tiers: Mapping[str, int],
        check_timeout: float = 5.0,
        check_interval: float = 300.0,
    ) -> None:
        self._records: Dict[str, ProviderRecord] = {
            name: ProviderRecord(id=name, tier=tier) for name, tier in tiers.items()
        }
        self._check_timeout = check_timeout
        self._check_interval = check_interval
        self._last_sweep = 0.0
        self._checking = False

    @classmethod
    def from_config(cls, config: RouterConfig) -> "ProviderHealthRegistry":
        return cls(
            {name: prov.tier for name, prov in config.providers.items()},
            check_timeout=config.health_check.timeout_seconds,
            check_interval=config.health_check.interval_seconds,
        )

    def __contains__(self, provider: str) -> bool:
        return provider in self._records

    def record(self, provider: str) -> Optional[ProviderRecord]:
        return self._records.get(provider)

    def tier(self, provider: str, default: int = 0) -> int:
        record = self._records.get(provider)
        return record.tier if record is not None else default

    def healthy_count(self) -> int:
        return sum(1 for record in self._records.values() if record.healthy)

    def is_healthy(self, provider: str) -> bool:
        """Unknown providers are never healthy."""
        record = self._records.get(provider)
        return record is not None and record.healthy

    def mark_unhealthy(self, provider: str, error: Optional[str] = None) -> None:
        record = self._records.get(provider)
        if record is None:
            return
        with record.lock:
            record.healthy = False
            record.last_check = time.time()
            record.last_error = error
        _logger.warning("Provider %s marked unhealthy: %s", provider, error or "no detail")

    def mark_healthy(self, provider: str, latency_ms: int = 0) -> None:
        record = self._records.get(provider)
        if record is None:
            return
        with record.lock:
            record.healthy = True
            record.last_check = time.time()
            record.latency_ms = latency_ms
            record.last_error = None

    async def run_health_check(self, provider: Provider) -> HealthStatus:
        """Probe one provider, bounded by the check timeout, and record the result."""
        start = time.monotonic()
        try:
            status = await asyncio.wait_for(provider.health_check(), self._check_timeout)
        except asyncio.TimeoutError:
            status = HealthStatus(
                healthy=False,
                response_time_ms=int((time.monotonic() - start) * 1000),
                error="health check timed out after {}s".format(self._check_timeout),
            )
        except Exception as exc:
            status = HealthStatus(
                healthy=False,
                response_time_ms=int((time.monotonic() - start) * 1000),
                error=str(exc),
            )

        if status.healthy:
            self.mark_healthy(provider.name, status.response_time_ms)
            _logger.info("%s: healthy (%dms)", provider.name, status.response_time_ms)
        else:
            self.mark_unhealthy(provider.name, status.error)
        return status

    async def check_all(self, providers: Mapping[str, Provider]) -> Dict[str, HealthStatus]:
        """Check every provider concurrently.

        Returns an empty dict without doing anything when a sweep is
        already running.
        """
        if self._checking:
            return {}
        self._checking = True
        try:
            names = [name for name in providers if name in self._records]
            results = await asyncio.gather(
                *(self.run_health_check(providers[name]) for name in names)
            )
            self._last_sweep = time.time()
            return dict(zip(names, results))
        finally:
            self._checking = False

    async def check_all_if_due(
        self, providers: Mapping[str, Provider]
    ) -> Dict[str, HealthStatus]:
        if time.time() - self._last_sweep < self._check_interval:
            return {}
        return await self.check_all(providers)

    def statuses(self) -> Dict[str, Dict[str, object]]:
        return {
            name: record.to_dict()
            for name, record in sorted(self._records.items(), key=lambda kv: kv[1].tier)
        }
