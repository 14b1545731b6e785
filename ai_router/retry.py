"""Retry-with-exponential-backoff combinator.

Runs a coroutine factory up to ``max_retries`` times and reports how it
went instead of raising, so callers branch on the outcome rather than on
exceptions. A classifier function decides which failures are permanent.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried call."""

    result: Optional[T] = None
    error: Optional[Exception] = None
    attempts: int = 0
    permanent: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.attempts > 0


def backoff_delay(initial_backoff: float, attempt: int) -> float:
    """Delay before the retry that follows failed try number ``attempt``."""
    return initial_backoff * (2 ** (attempt - 1))


async def retry_with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    initial_backoff: float,
    is_permanent: Callable[[Exception], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> RetryOutcome[T]:
    """Call ``call`` until it succeeds, fails permanently, or tries run out.

    Args:
        call: Zero-argument coroutine factory, invoked once per try.
        max_retries: Total number of tries allowed.
        initial_backoff: Seconds to wait after the first failure; doubles
            after every subsequent failure.
        is_permanent: Returns True for errors that must not be retried.
        sleep: Awaitable delay used between tries.
        on_retry: Called with (attempt, error, delay) before each sleep.

    Returns:
        A RetryOutcome. Cancellation is not caught.
    """
    outcome: RetryOutcome[T] = RetryOutcome()

    while outcome.attempts < max_retries:
        outcome.attempts += 1
        try:
            outcome.result = await call()
        except Exception as exc:
            outcome.error = exc
            if is_permanent(exc):
                outcome.permanent = True
                return outcome
            if outcome.attempts < max_retries:
                delay = backoff_delay(initial_backoff, outcome.attempts)
                if on_retry is not None:
                    on_retry(outcome.attempts, exc, delay)
                await sleep(delay)
            continue

        outcome.error = None
        return outcome

    return outcome
