"""Tests for the per-provider sliding-window rate-limit tracker."""

import time

import pytest

from ai_router.config import RateLimitRule
from ai_router.limiter import RateLimitState, RateLimitTracker, status_for_percentage


class _Clock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
    current = _Clock()
    monkeypatch.setattr(time, "time", current)
    return current


def _tracker(limit: int = 10, window: str = "minute") -> RateLimitTracker:
    return RateLimitTracker(rules={"groq": RateLimitRule(window=window, limit=limit)})


def test_new_provider_is_healthy(clock: _Clock) -> None:
    status = _tracker().check_rate_limit("groq")
    assert status.status == RateLimitState.HEALTHY
    assert status.usage == 0
    assert status.remaining == 10
    assert status.limit == 10


def test_status_thresholds() -> None:
    assert status_for_percentage(0) == RateLimitState.HEALTHY
    assert status_for_percentage(79.9) == RateLimitState.HEALTHY
    assert status_for_percentage(80) == RateLimitState.WARNING
    assert status_for_percentage(95) == RateLimitState.CRITICAL
    assert status_for_percentage(99.9) == RateLimitState.CRITICAL
    assert status_for_percentage(100) == RateLimitState.BLOCKED
    assert status_for_percentage(150) == RateLimitState.BLOCKED


def test_status_is_monotonic_in_usage(clock: _Clock) -> None:
    """Status only moves forward through healthy, warning, critical, blocked."""
    tracker = _tracker(limit=20)
    order = [
        RateLimitState.HEALTHY,
        RateLimitState.WARNING,
        RateLimitState.CRITICAL,
        RateLimitState.BLOCKED,
    ]
    seen = [tracker.check_rate_limit("groq").status]
    for _ in range(22):
        tracker.record_request("groq")
        seen.append(tracker.check_rate_limit("groq").status)

    ranks = [order.index(s) for s in seen]
    assert ranks == sorted(ranks)
    assert seen[16] == RateLimitState.WARNING  # 16/20 = 80%
    assert seen[19] == RateLimitState.CRITICAL  # 19/20 = 95%
    assert seen[20] == RateLimitState.BLOCKED  # 20/20 = 100%


def test_sliding_window_expires_old_requests(clock: _Clock) -> None:
    """Requests leave the window after exactly its length, not at a bucket edge."""
    tracker = _tracker(limit=2)
    tracker.record_request("groq")
    clock.now += 30
    tracker.record_request("groq")
    assert tracker.is_blocked("groq")

    clock.now += 30.5  # first request is now 60.5s old
    status = tracker.check_rate_limit("groq")
    assert status.usage == 1
    assert status.status == RateLimitState.HEALTHY


def test_reset_time_tracks_oldest_request(clock: _Clock) -> None:
    tracker = _tracker(limit=5)
    tracker.record_request("groq")
    first = clock.now
    clock.now += 10
    tracker.record_request("groq")
    assert tracker.check_rate_limit("groq").reset_time == first + 60


def test_tokens_are_counted_within_window(clock: _Clock) -> None:
    tracker = _tracker(limit=100)
    tracker.record_request("groq", tokens=30)
    tracker.record_request("groq", tokens=12)
    assert tracker.check_rate_limit("groq").tokens == 42


def test_month_window(clock: _Clock) -> None:
    tracker = _tracker(limit=2, window="month")
    tracker.record_request("groq")
    clock.now += 20 * 24 * 3600
    tracker.record_request("groq")
    assert tracker.is_blocked("groq")
    clock.now += 11 * 24 * 3600
    assert tracker.check_rate_limit("groq").usage == 1


def test_providers_are_independent(clock: _Clock) -> None:
    tracker = RateLimitTracker(
        rules={
            "groq": RateLimitRule(window="minute", limit=1),
            "mistral": RateLimitRule(window="month", limit=1),
        }
    )
    tracker.record_request("groq")
    assert tracker.is_blocked("groq")
    assert not tracker.is_blocked("mistral")


def test_unconfigured_provider_never_blocked(clock: _Clock) -> None:
    tracker = RateLimitTracker()
    for _ in range(100):
        tracker.record_request("anything")
    status = tracker.check_rate_limit("anything")
    assert status.status == RateLimitState.HEALTHY
    assert status.limit is None
    assert status.usage == 100


def test_reset_provider(clock: _Clock) -> None:
    tracker = _tracker(limit=1)
    tracker.record_request("groq")
    tracker.reset_provider("groq")
    assert tracker.check_rate_limit("groq").usage == 0


def test_cleanup_drops_idle_windows(clock: _Clock) -> None:
    tracker = _tracker(limit=10)
    tracker.record_request("groq")
    tracker.check_rate_limit("idle")

    clock.now += 31 * 24 * 3600
    removed = tracker.cleanup()
    assert removed == 2
    assert tracker.get_all_statuses()["groq"].usage == 0


def test_get_all_statuses_includes_configured(clock: _Clock) -> None:
    statuses = _tracker().get_all_statuses()
    assert list(statuses) == ["groq"]
