"""Per-provider sliding-window rate-limit tracking.

Each provider has one configured limiting dimension (requests per minute,
hour, day, or month). Request timestamps are kept per provider and purged
once they fall outside the largest tracked window, so the count for any
dimension reflects real elapsed time rather than wall-clock buckets.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional, Tuple

from ai_router.config import WINDOW_SECONDS, RateLimitRule

_logger = logging.getLogger("ai_router")

MAX_WINDOW_SECONDS = max(WINDOW_SECONDS.values())
IDLE_WINDOW_SECONDS = 24 * 60 * 60

WARNING_PERCENT = 80.0
CRITICAL_PERCENT = 95.0
BLOCKED_PERCENT = 100.0


class RateLimitState(str, Enum):
    """Usage band of a provider's current window."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    BLOCKED = "blocked"


def status_for_percentage(percentage: float) -> RateLimitState:
    """Map a usage percentage onto its status band."""
    if percentage >= BLOCKED_PERCENT:
        return RateLimitState.BLOCKED
    if percentage >= CRITICAL_PERCENT:
        return RateLimitState.CRITICAL
    if percentage >= WARNING_PERCENT:
        return RateLimitState.WARNING
    return RateLimitState.HEALTHY


@dataclass
class RateLimitStatus:
    """Snapshot of a provider's usage against its configured limit."""

    provider: str
    status: RateLimitState
    usage: int
    limit: Optional[int]
    remaining: Optional[int]
    reset_time: float
    window_start: float
    percentage: float
    tokens: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "usage": self.usage,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": self.reset_time,
            "window_start": self.window_start,
            "percentage": round(self.percentage, 2),
            "tokens": self.tokens,
        }


@dataclass
class _ProviderWindow:
    """Request history for one provider, oldest first."""

    window_start: float
    requests: Deque[Tuple[float, int]] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def token_count(self) -> int:
        return sum(tokens for _, tokens in self.requests)

    def purge(self, now: float) -> None:
        cutoff = now - MAX_WINDOW_SECONDS
        while self.requests and self.requests[0][0] <= cutoff:
            self.requests.popleft()


@dataclass
class RateLimitTracker:
    """Per-provider in-memory sliding-window tracker.

    Windows are created lazily on first use. Each window carries its own
    lock so requests for different providers never contend.
    """

    rules: Dict[str, RateLimitRule] = field(default_factory=dict)
    _windows: Dict[str, _ProviderWindow] = field(default_factory=dict)
    _windows_lock: threading.Lock = field(default_factory=threading.Lock)

    def check_rate_limit(self, provider: str) -> RateLimitStatus:
        """Return the provider's current usage band.

        Providers without a configured rule are always healthy.
        """
        now = time.time()
        window = self._get_or_create_window(provider, now)
        rule = self.rules.get(provider)

        with window.lock:
            window.purge(now)
            return self._status(provider, rule, window, now)

    def record_request(self, provider: str, tokens: int = 0) -> RateLimitStatus:
        """Record a completed request and log threshold crossings."""
        now = time.time()
        window = self._get_or_create_window(provider, now)
        rule = self.rules.get(provider)

        with window.lock:
            window.purge(now)
            window.requests.append((now, tokens))
            status = self._status(provider, rule, window, now)

        if status.status == RateLimitState.BLOCKED:
            _logger.error(
                "Rate limit exceeded for %s: %.1f%% used", provider, status.percentage
            )
        elif status.status in (RateLimitState.WARNING, RateLimitState.CRITICAL):
            _logger.warning(
                "Rate limit %s for %s: %.1f%% used",
                status.status.value,
                provider,
                status.percentage,
            )
        return status

    def is_blocked(self, provider: str) -> bool:
        return self.check_rate_limit(provider).status == RateLimitState.BLOCKED

    def get_all_statuses(self) -> Dict[str, RateLimitStatus]:
        """Return the status of every provider with a rule or a window."""
        with self._windows_lock:
            providers = set(self.rules) | set(self._windows)
        return {name: self.check_rate_limit(name) for name in sorted(providers)}

    def reset_provider(self, provider: str) -> None:
        """Forget all recorded requests for a provider."""
        with self._windows_lock:
            self._windows.pop(provider, None)

    def cleanup(self) -> int:
        """Purge old timestamps and drop windows idle for over a day.

        Returns:
            The number of windows removed.
        """
        now = time.time()
        removed = 0
        with self._windows_lock:
            for name in list(self._windows):
                window = self._windows[name]
                with window.lock:
                    window.purge(now)
                    idle = not window.requests and now - window.window_start > IDLE_WINDOW_SECONDS
                if idle:
                    del self._windows[name]
                    removed += 1
        return removed

    def _get_or_create_window(self, provider: str, now: float) -> _ProviderWindow:
        window = self._windows.get(provider)
        if window is not None:
            return window
        with self._windows_lock:
            window = self._windows.get(provider)
            if window is None:
                window = _ProviderWindow(window_start=now)
                self._windows[provider] = window
        return window

    @staticmethod
    def _status(
        provider: str,
        rule: Optional[RateLimitRule],
        window: _ProviderWindow,
        now: float,
    ) -> RateLimitStatus:
        if rule is None:
            return RateLimitStatus(
                provider=provider,
                status=RateLimitState.HEALTHY,
                usage=len(window.requests),
                limit=None,
                remaining=None,
                reset_time=now,
                window_start=window.window_start,
                percentage=0.0,
                tokens=window.token_count,
            )

        window_start = now - rule.window_seconds
        in_window = [(ts, tokens) for ts, tokens in window.requests if ts > window_start]
        usage = len(in_window)
        percentage = usage / rule.limit * 100
        # The window frees a slot when its oldest request ages out.
        reset_time = in_window[0][0] + rule.window_seconds if in_window else now

        return RateLimitStatus(
            provider=provider,
            status=status_for_percentage(percentage),
            usage=usage,
            limit=rule.limit,
            remaining=max(0, rule.limit - usage),
            reset_time=reset_time,
            window_start=window_start,
            percentage=percentage,
            tokens=sum(tokens for _, tokens in in_window),
        )
