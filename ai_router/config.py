"""Configuration loader for the AI provider router.

Reads a JSON (or YAML) config file containing provider definitions,
per-category fallback chains, rate-limit plans, and retry/cache/usage-log
parameters. API keys are resolved from environment variables at call time.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

# Window sizes (seconds) for each rate-limit dimension, smallest first.
WINDOW_SECONDS: Dict[str, int] = {
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
}

CATEGORIES = ("time_sensitive", "app_data", "general")


@dataclass
class RateLimitRule:
    """The single limiting dimension of a provider's plan."""

    window: str
    limit: int

    @property
    def window_seconds(self) -> int:
        return WINDOW_SECONDS[self.window]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["RateLimitRule"]:
        """Pick the largest configured window (month > day > hour > minute)."""
        for window in reversed(list(WINDOW_SECONDS)):
            value = data.get("requests_per_{}".format(window))
            if value is not None:
                if int(value) <= 0:
                    raise ValueError(
                        "requests_per_{} must be positive, got {}".format(window, value)
                    )
                return cls(window=window, limit=int(value))
        return None


@dataclass
class ProviderConfig:
    """Configuration for a single text-generation provider."""

    name: str
    base_url: str
    api_key_env: str
    default_model: str
    tier: int = 1
    rate_limit: Optional[RateLimitRule] = None
    max_tokens: int = 2048
    temperature: float = 0.7

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the API key from the environment variable."""
        return os.getenv(self.api_key_env)


@dataclass
class ChainEntry:
    """One provider slot in a category's fallback chain."""

    provider: str
    tier: int


@dataclass
class RetryConfig:
    """Per-provider retry and timeout parameters."""

    max_retries: int = 3
    initial_backoff_ms: int = 250
    call_timeout_seconds: float = 25.0

    @property
    def initial_backoff(self) -> float:
        return self.initial_backoff_ms / 1000.0


@dataclass
class CacheConfig:
    """Response cache parameters."""

    ttl_seconds: float = 300.0
    max_size: int = 1000


@dataclass
class UsageLogConfig:
    """Batched usage log parameters."""

    path: str = "logs/usage.jsonl"
    batch_size: int = 10
    flush_interval_seconds: float = 30.0
    max_backlog: int = 50


@dataclass
class HealthCheckConfig:
    """Periodic provider health check parameters."""

    interval_seconds: float = 300.0
    timeout_seconds: float = 5.0


@dataclass
class RouterConfig:
    """Top-level router configuration."""

    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    fallback_chains: Dict[str, List[ChainEntry]] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    usage_log: UsageLogConfig = field(default_factory=UsageLogConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    log_file: str = "logs/router.log"

    def chain_for(self, category: str) -> List[ChainEntry]:
        """Return the fallback chain for a category.

        Categories without a configured chain use every provider, ranked by
        the provider's own tier.
        """
        chain = self.fallback_chains.get(category)
        if chain:
            return list(chain)
        return [
            ChainEntry(provider=p.name, tier=p.tier)
            for p in sorted(self.providers.values(), key=lambda p: p.tier)
        ]


def _parse_chain(category: str, raw: List[Any]) -> List[ChainEntry]:
    entries: List[ChainEntry] = []
    for position, item in enumerate(raw, start=1):
        if isinstance(item, str):
            entries.append(ChainEntry(provider=item, tier=position))
        elif isinstance(item, dict) and "provider" in item:
            entries.append(
                ChainEntry(provider=item["provider"], tier=int(item.get("tier", position)))
            )
        else:
            raise ValueError(
                "Invalid fallback chain entry for '{}': {!r}".format(category, item)
            )
    return entries


def _read_raw(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        try:
            if path.suffix in (".yaml", ".yml"):
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ValueError("Invalid config file {}: {}".format(path, exc)) from exc

    if not isinstance(raw, dict):
        raise ValueError("Config file {} must contain a mapping".format(path))
    return raw


def parse_config(raw: Dict[str, Any]) -> RouterConfig:
    """Build a RouterConfig from an already-parsed mapping."""
    providers: Dict[str, ProviderConfig] = {}
    for name, prov in raw.get("providers", {}).items():
        try:
            providers[name] = ProviderConfig(
                name=name,
                base_url=prov["base_url"],
                api_key_env=prov.get("api_key_env", "{}_API_KEY".format(name.upper())),
                default_model=prov.get("default_model", ""),
                tier=int(prov.get("tier", 1)),
                rate_limit=RateLimitRule.from_dict(prov.get("rate_limit", {})),
                max_tokens=int(prov.get("max_tokens", 2048)),
                temperature=float(prov.get("temperature", 0.7)),
            )
        except KeyError as exc:
            raise ValueError(
                "Provider '{}' is missing required field {}".format(name, exc)
            ) from exc

    fallback_chains: Dict[str, List[ChainEntry]] = {}
    for category, chain in raw.get("fallback_chains", {}).items():
        if category not in CATEGORIES:
            raise ValueError("Unknown query category in fallback_chains: {}".format(category))
        entries = _parse_chain(category, chain)
        for entry in entries:
            if entry.provider not in providers:
                raise ValueError(
                    "Fallback chain '{}' references unconfigured provider '{}'".format(
                        category, entry.provider
                    )
                )
        fallback_chains[category] = entries

    retry_raw = raw.get("retry", {})
    retry = RetryConfig(
        max_retries=int(retry_raw.get("max_retries", 3)),
        initial_backoff_ms=int(retry_raw.get("initial_backoff_ms", 250)),
        call_timeout_seconds=float(retry_raw.get("call_timeout_seconds", 25.0)),
    )
    if retry.max_retries < 1:
        raise ValueError("retry.max_retries must be at least 1")

    cache_raw = raw.get("cache", {})
    cache = CacheConfig(
        ttl_seconds=float(cache_raw.get("ttl_seconds", 300.0)),
        max_size=int(cache_raw.get("max_size", 1000)),
    )

    usage_raw = raw.get("usage_log", {})
    usage_log = UsageLogConfig(
        path=usage_raw.get("path", "logs/usage.jsonl"),
        batch_size=int(usage_raw.get("batch_size", 10)),
        flush_interval_seconds=float(usage_raw.get("flush_interval_seconds", 30.0)),
        max_backlog=int(usage_raw.get("max_backlog", 50)),
    )

    health_raw = raw.get("health_check", {})
    health_check = HealthCheckConfig(
        interval_seconds=float(health_raw.get("interval_seconds", 300.0)),
        timeout_seconds=float(health_raw.get("timeout_seconds", 5.0)),
    )

    return RouterConfig(
        providers=providers,
        fallback_chains=fallback_chains,
        retry=retry,
        cache=cache,
        usage_log=usage_log,
        health_check=health_check,
        log_file=raw.get("log_file", "logs/router.log"),
    )


def load_config(path: Union[str, Path]) -> RouterConfig:
    """Load router configuration from a JSON or YAML file.

    Args:
        path: Path to the config file. ``.yaml``/``.yml`` files are parsed as
            YAML, anything else as JSON.

    Returns:
        A fully resolved RouterConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    return parse_config(_read_raw(path))
