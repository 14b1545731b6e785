"""Provider clients for OpenAI-compatible text-generation APIs.

Every provider exposes the same two coroutines, ``chat`` and
``health_check``; the orchestrator only depends on that interface. Failures
are raised as one of the ProviderError subclasses so callers can tell
permanent (credential) problems from transient ones.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

import httpx

from ai_router.config import ProviderConfig, RouterConfig
from ai_router.models import ChatMessage

_PERMANENT_MARKERS = (
    "authentication",
    "401",
    "403",
    "invalid api",
    "api key not valid",
    "unauthorized",
)


class ProviderError(Exception):
    """Base class for provider call failures."""

    def __init__(self, provider: str, detail: str) -> None:
        self.provider = provider
        self.detail = detail
        super().__init__("{}: {}".format(provider, detail))


class PermanentProviderError(ProviderError):
    """Bad or missing credentials. Retrying will not help."""


class TransientProviderError(ProviderError):
    """Server error, malformed response, or network failure."""


class ProviderRateLimitError(TransientProviderError):
    """The provider itself answered HTTP 429."""


class ProviderTimeoutError(TransientProviderError):
    """The provider did not answer in time."""


def is_permanent_error(exc: BaseException) -> bool:
    """Return True when an error means the provider's credentials are broken.

    A PermanentProviderError always is. Any other error, typed or not, is
    judged by its message, since some providers report a bad key as a 400
    or 5xx with the reason only in the body.
    """
    if isinstance(exc, PermanentProviderError):
        return True
    return _mentions_credentials(str(exc))


def _mentions_credentials(text: str) -> bool:
    text = text.lower()
    return any(marker in text for marker in _PERMANENT_MARKERS)


@dataclass
class ProviderRequest:
    """What the orchestrator asks a provider to complete."""

    messages: List[ChatMessage]
    model: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass
class ProviderResult:
    """Result returned by a provider."""

    content: str
    model_used: str
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0


@dataclass
class HealthStatus:
    """Outcome of a provider health probe."""

    healthy: bool
    response_time_ms: int = 0
    error: Optional[str] = None


class Provider(Protocol):
    """Uniform provider interface."""

    name: str

    async def chat(self, request: ProviderRequest) -> ProviderResult: ...

    async def health_check(self) -> HealthStatus: ...


@dataclass
class OpenAICompatibleProvider:
    """Client for any ``/chat/completions`` style endpoint.

    A missing API key is reported as a PermanentProviderError on first use
    instead of failing at construction.
    """

    config: ProviderConfig
    timeout: float = 25.0
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.config.name

    def _headers(self) -> Dict[str, str]:
        api_key = self.config.api_key
        if not api_key:
            raise PermanentProviderError(
                self.name, "{} is not configured".format(self.config.api_key_env)
            )
        return {
            "Authorization": "Bearer {}".format(api_key),
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        detail = "HTTP {}: {}".format(status, resp.text[:200])
        if status in (401, 403) or _mentions_credentials(resp.text):
            raise PermanentProviderError(self.name, detail)
        if status == 429:
            raise ProviderRateLimitError(self.name, detail)
        raise TransientProviderError(self.name, detail)

    async def chat(self, request: ProviderRequest) -> ProviderResult:
        """Forward the request to the provider's chat completions endpoint."""
        headers = self._headers()
        url = "{}/chat/completions".format(self.config.base_url.rstrip("/"))
        payload = {
            "model": request.model or self.config.default_model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self.config.temperature
            ),
            "stream": False,
        }

        start = time.monotonic()
        try:
            async with self._client(self.timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(self.name, "request timed out: {}".format(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransientProviderError(self.name, "request failed: {}".format(exc)) from exc

        self._raise_for_status(resp)

        try:
            data = resp.json()
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TransientProviderError(
                self.name, "malformed response: {}".format(exc)
            ) from exc

        usage = data.get("usage") or {}
        return ProviderResult(
            content=content or "",
            model_used=data.get("model") or payload["model"],
            tokens_in=int(usage.get("prompt_tokens", 0)),
            tokens_out=int(usage.get("completion_tokens", 0)),
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    async def health_check(self) -> HealthStatus:
        """Probe the provider's model listing endpoint."""
        start = time.monotonic()
        try:
            headers = self._headers()
            url = "{}/models".format(self.config.base_url.rstrip("/"))
            async with self._client(self.timeout) as client:
                resp = await client.get(url, headers=headers)
            self._raise_for_status(resp)
        except (ProviderError, httpx.HTTPError) as exc:
            return HealthStatus(
                healthy=False,
                response_time_ms=int((time.monotonic() - start) * 1000),
                error=str(exc),
            )
        return HealthStatus(
            healthy=True, response_time_ms=int((time.monotonic() - start) * 1000)
        )


def build_providers(
    config: RouterConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Provider]:
    """Instantiate one client per configured provider, keyed by id."""
    timeout = config.retry.call_timeout_seconds
    return {
        name: OpenAICompatibleProvider(config=prov, timeout=timeout, transport=transport)
        for name, prov in config.providers.items()
    }
