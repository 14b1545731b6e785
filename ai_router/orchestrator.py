"""Fallback orchestration across text-generation providers.

Request flow:
1. Return a cached response if one is fresh
2. Classify the query to pick a fallback chain
3. Order the chain by tier, drop unhealthy providers, honor a preferred provider
4. For each provider: skip if unhealthy or rate-limit blocked, otherwise
   call it with bounded retries and exponential backoff
5. First success wins: record usage, rate-limit and cache, then return
6. If every provider is skipped or exhausted, return a degradation response

``process`` never raises for provider or bookkeeping failures; the caller
always gets a well-formed ChatResponse.
"""

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, List, Optional

from ai_router.classifier import classify
from ai_router.config import ChainEntry
from ai_router.models import ChatMessage, ChatRequest, ChatResponse, QueryCategory, TokenUsage
from ai_router.provider import (
    ProviderRequest,
    ProviderResult,
    ProviderTimeoutError,
    is_permanent_error,
)
from ai_router.retry import RetryOutcome, retry_with_backoff
from ai_router.router import build_attempt_order
from ai_router.state import OrchestratorState
from ai_router.telemetry import log_event
from ai_router.usage import UsageLogEntry

_logger = logging.getLogger("ai_router")

SYSTEM_PROVIDER = "system"

ContextBuilder = Callable[[ChatRequest], Awaitable[Optional[str]]]

SYSTEM_MESSAGES = {
    QueryCategory.TIME_SENSITIVE: (
        "You are a study assistant. The student is asking about dates, results "
        "or announcements; say plainly when you cannot confirm information is current."
    ),
    QueryCategory.APP_DATA: (
        "You are a study assistant. Ground answers about the student's progress "
        "in the study data provided and do not invent numbers."
    ),
    QueryCategory.GENERAL: "You are a helpful study assistant. Explain clearly and concisely.",
}

DEGRADATION_MESSAGES = {
    QueryCategory.TIME_SENSITIVE: (
        "I apologize, but I'm unable to access current information right now. "
        "Please try again later or check official sources for the latest updates."
    ),
    QueryCategory.APP_DATA: (
        "I'm having trouble accessing your study data right now. Please try again "
        "in a moment, or check your dashboard for the latest progress updates."
    ),
    QueryCategory.GENERAL: (
        "I'm experiencing high demand right now. Please try again in a few "
        "moments, and I'll be happy to help!"
    ),
}

ERROR_HANDLER_MESSAGE = (
    "I apologize, but I'm experiencing technical difficulties. Please try again in a moment."
)

NO_PROVIDERS_MESSAGE = (
    "AI service is currently unavailable. Please check your API keys configuration. "
    "Visit the admin panel to configure your AI providers."
)

CONFIGURATION_ERROR_MESSAGE = (
    "AI service configuration error: {}. Please configure your AI provider API keys "
    "in the admin panel."
)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class FallbackOrchestrator:
    """Runs a request through its category's fallback chain."""

    def __init__(
        self,
        state: OrchestratorState,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        context_builder: Optional[ContextBuilder] = None,
    ) -> None:
        self.state = state
        self._sleep = sleep
        self._context_builder = context_builder

    async def process(self, request: ChatRequest) -> ChatResponse:
        """Answer a chat request, degrading gracefully if no provider succeeds."""
        start = time.monotonic()
        request_id = "req-{}".format(uuid.uuid4().hex[:12])
        try:
            return await self._process(request, request_id, start)
        except Exception as exc:
            _logger.exception("[%s] Orchestration failed unexpectedly", request_id)
            log_event(
                "error",
                request_id=request_id,
                level=logging.ERROR,
                user_id=request.user_id,
                error=str(exc),
            )
            return ChatResponse(
                id=request_id,
                content=ERROR_HANDLER_MESSAGE,
                model_used="error_handler",
                provider_used=SYSTEM_PROVIDER,
                category=QueryCategory.GENERAL,
                tier_used=0,
                latency_ms=_elapsed_ms(start),
            )

    process_query = process

    async def _process(
        self, request: ChatRequest, request_id: str, start: float
    ) -> ChatResponse:
        cached = self.state.cache.get(request)
        if cached is not None:
            log_event(
                "cache_hit",
                request_id=request_id,
                user_id=request.user_id,
                provider=cached.provider_used,
            )
            return cached.model_copy(update={"id": request_id})

        classification = classify(request.message, request.chat_type)
        category = classification.category
        order = build_attempt_order(
            self.state.config, category, self.state.health, request.preferred_provider
        )
        log_event(
            "classified",
            request_id=request_id,
            user_id=request.user_id,
            category=category.value,
            confidence=round(classification.confidence, 3),
            keywords=classification.keywords,
            chain=[e.provider for e in order],
        )

        messages = await self._prepare_messages(request, category, request_id)

        attempted: List[str] = []
        last_error: Optional[Exception] = None
        for entry in order:
            if not self._can_attempt(entry.provider, request_id):
                continue

            attempted.append(entry.provider)
            fallback_used = len(attempted) > 1
            attempt_start = time.monotonic()
            outcome = await self._attempt(entry, request, messages, request_id)

            if outcome.succeeded and outcome.result is not None:
                return self._on_success(
                    request, request_id, start, category, entry, outcome.result, fallback_used
                )

            last_error = outcome.error
            if outcome.permanent:
                self.state.health.mark_unhealthy(entry.provider, str(outcome.error))
            log_event(
                "provider_failed",
                request_id=request_id,
                level=logging.WARNING,
                provider=entry.provider,
                attempts=outcome.attempts,
                permanent=outcome.permanent,
                error=str(outcome.error),
            )
            self.state.usage.log_failure(
                UsageLogEntry(
                    user_id=request.user_id,
                    provider=entry.provider,
                    model=self._model_for(entry.provider, request),
                    query_category=category.value,
                    tier=entry.tier,
                    success=False,
                    latency_ms=_elapsed_ms(attempt_start),
                    fallback_used=fallback_used,
                    error_message=str(outcome.error),
                    request_id=request_id,
                )
            )

        return self._degrade(request, request_id, start, category, attempted, last_error)

    def _can_attempt(self, provider: str, request_id: str) -> bool:
        """Skip-check: the provider must exist, be healthy, and not be blocked."""
        reason = None
        if provider not in self.state.providers:
            reason = "unknown provider"
        elif not self.state.health.is_healthy(provider):
            reason = "unhealthy"
        elif self.state.limiter.is_blocked(provider):
            reason = "rate limit blocked"

        if reason is not None:
            log_event("skipped", request_id=request_id, provider=provider, reason=reason)
            return False
        return True

    def _model_for(self, provider: str, request: ChatRequest) -> str:
        if request.preferred_model and provider == request.preferred_provider:
            return request.preferred_model
        cfg = self.state.config.providers.get(provider)
        return cfg.default_model if cfg is not None else ""

    async def _prepare_messages(
        self, request: ChatRequest, category: QueryCategory, request_id: str
    ) -> List[ChatMessage]:
        system = SYSTEM_MESSAGES[category]

        if request.include_context and self._context_builder is not None:
            try:
                context = await self._context_builder(request)
            except Exception as exc:
                _logger.warning("[%s] Context builder failed: %s", request_id, exc)
                context = None
            if context:
                system = "{}\n\nStudent context:\n{}".format(system, context)

        messages = [ChatMessage(role="system", content=system)]
        messages.extend(request.conversation_history)
        messages.append(ChatMessage(role="user", content=request.message))
        return messages

    async def _attempt(
        self,
        entry: ChainEntry,
        request: ChatRequest,
        messages: List[ChatMessage],
        request_id: str,
    ) -> RetryOutcome[ProviderResult]:
        provider = self.state.providers[entry.provider]
        retry = self.state.config.retry
        cfg = self.state.config.providers.get(entry.provider)
        provider_request = ProviderRequest(
            messages=messages,
            model=self._model_for(entry.provider, request),
            max_tokens=cfg.max_tokens if cfg is not None else None,
            temperature=cfg.temperature if cfg is not None else None,
        )

        async def call() -> ProviderResult:
            try:
                return await asyncio.wait_for(
                    provider.chat(provider_request), retry.call_timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                raise ProviderTimeoutError(
                    entry.provider,
                    "no response within {}s".format(retry.call_timeout_seconds),
                ) from exc

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            log_event(
                "retry",
                request_id=request_id,
                level=logging.WARNING,
                provider=entry.provider,
                attempt=attempt,
                max_retries=retry.max_retries,
                delay_ms=int(delay * 1000),
                error=str(error),
            )

        return await retry_with_backoff(
            call,
            max_retries=retry.max_retries,
            initial_backoff=retry.initial_backoff,
            is_permanent=is_permanent_error,
            sleep=self._sleep,
            on_retry=on_retry,
        )

    def _on_success(
        self,
        request: ChatRequest,
        request_id: str,
        start: float,
        category: QueryCategory,
        entry: ChainEntry,
        result: ProviderResult,
        fallback_used: bool,
    ) -> ChatResponse:
        self.state.limiter.record_request(entry.provider, result.tokens_in + result.tokens_out)

        response = ChatResponse(
            id=request_id,
            content=result.content,
            model_used=result.model_used,
            provider_used=entry.provider,
            category=category,
            tier_used=entry.tier,
            cached=False,
            tokens_used=TokenUsage(input=result.tokens_in, output=result.tokens_out),
            latency_ms=_elapsed_ms(start),
            fallback_used=fallback_used,
        )

        self.state.usage.log_success(
            UsageLogEntry(
                user_id=request.user_id,
                provider=entry.provider,
                model=result.model_used,
                query_category=category.value,
                tier=entry.tier,
                success=True,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                latency_ms=result.latency_ms or response.latency_ms,
                fallback_used=fallback_used,
                request_id=request_id,
            )
        )
        self.state.cache.set(request, response)

        log_event(
            "success",
            request_id=request_id,
            user_id=request.user_id,
            provider=entry.provider,
            model=result.model_used,
            tier=entry.tier,
            fallback_used=fallback_used,
            latency_ms=response.latency_ms,
        )
        return response

    def _degradation_message(
        self, category: QueryCategory, last_error: Optional[Exception], request_id: str
    ) -> str:
        """Category apology, or configuration guidance when keys look missing."""
        if self.state.health.healthy_count() == 0:
            _logger.error(
                "[%s] No healthy providers available; API keys are probably not configured",
                request_id,
            )
            return NO_PROVIDERS_MESSAGE
        if last_error is not None and "not configured" in str(last_error):
            _logger.error("[%s] API key configuration issue: %s", request_id, last_error)
            return CONFIGURATION_ERROR_MESSAGE.format(last_error)
        return DEGRADATION_MESSAGES[category]

    def _degrade(
        self,
        request: ChatRequest,
        request_id: str,
        start: float,
        category: QueryCategory,
        attempted: List[str],
        last_error: Optional[Exception],
    ) -> ChatResponse:
        fallback_used = len(attempted) > 1
        response = ChatResponse(
            id=request_id,
            content=self._degradation_message(category, last_error, request_id),
            model_used="graceful_degradation",
            provider_used=SYSTEM_PROVIDER,
            category=category,
            tier_used=0,
            cached=False,
            latency_ms=_elapsed_ms(start),
            fallback_used=fallback_used,
        )

        error = "All providers failed - {}".format(
            last_error if last_error is not None else "no provider available"
        )
        self.state.usage.log_failure(
            UsageLogEntry(
                user_id=request.user_id,
                provider=SYSTEM_PROVIDER,
                model="graceful_degradation",
                query_category=category.value,
                tier=0,
                success=False,
                latency_ms=response.latency_ms,
                fallback_used=fallback_used,
                error_message=error,
                request_id=request_id,
            )
        )
        log_event(
            "degraded",
            request_id=request_id,
            level=logging.ERROR,
            user_id=request.user_id,
            category=category.value,
            attempted=attempted,
            error=error,
        )
        return response
