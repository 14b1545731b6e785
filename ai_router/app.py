"""FastAPI application for the AI provider router.

Provides a /v1/chat endpoint that classifies the query, walks the
category's provider fallback chain with retries, and always answers with a
well-formed ChatResponse (degraded responses have provider "system").

Orchestration state is built once and kept on ``app.state``; handlers get
it through FastAPI dependencies rather than module globals.
"""

import asyncio
import os
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ai_router.config import load_config
from ai_router.models import ChatRequest, ChatResponse, ErrorDetail, ErrorResponse
from ai_router.orchestrator import FallbackOrchestrator
from ai_router.state import OrchestratorState
from ai_router.telemetry import setup_logging

CONFIG_PATH = os.getenv("ROUTER_CONFIG", "config/example.config.json")
MAINTENANCE_INTERVAL_SECONDS = 60.0


def get_orchestrator(request: Request) -> FallbackOrchestrator:
    """Return the app's orchestrator, building it from CONFIG_PATH on first use."""
    app = request.app
    orchestrator: Optional[FallbackOrchestrator] = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        state = OrchestratorState.from_config(load_config(CONFIG_PATH))
        orchestrator = FallbackOrchestrator(state)
        app.state.orchestrator = orchestrator
    return orchestrator


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Set up logging and background tasks on startup; flush usage on shutdown."""
    orchestrator: Optional[FallbackOrchestrator] = getattr(
        application.state, "orchestrator", None
    )
    if orchestrator is None:
        orchestrator = FallbackOrchestrator(
            OrchestratorState.from_config(load_config(CONFIG_PATH))
        )
        application.state.orchestrator = orchestrator

    state = orchestrator.state
    setup_logging(state.config.log_file)
    state.usage.start()
    maintenance = asyncio.create_task(
        state.maintenance_loop(MAINTENANCE_INTERVAL_SECONDS)
    )
    try:
        yield
    finally:
        maintenance.cancel()
        with suppress(asyncio.CancelledError):
            await maintenance
        await state.usage.aclose()


def _error_response(status: int, error_type: str, message: str) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(error=ErrorDetail(type=error_type, message=message))
    return JSONResponse(status_code=status, content=body.model_dump())


def create_app(orchestrator: Optional[FallbackOrchestrator] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator. When omitted, one is built from
            the config at ``ROUTER_CONFIG`` on startup or first request.
    """
    application = FastAPI(title="AI Provider Router", version="0.1.0", lifespan=lifespan)
    application.state.orchestrator = orchestrator

    @application.post("/v1/chat", response_model=ChatResponse)
    async def chat(
        request: ChatRequest,
        orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
    ) -> ChatResponse:
        """Route a chat request through the provider fallback chain."""
        return await orchestrator.process_query(request)

    @application.get("/v1/providers")
    async def providers(
        orchestrator: FallbackOrchestrator = Depends(get_orchestrator),
    ) -> Dict[str, Any]:
        """Report provider health, rate-limit usage, and cache statistics."""
        state = orchestrator.state
        rate_limits = state.limiter.get_all_statuses()
        entries: List[Dict[str, Any]] = []
        for name, record in state.health.statuses().items():
            limit = rate_limits.get(name)
            entries.append(
                {**record, "rate_limit": limit.to_dict() if limit is not None else None}
            )
        return {
            "providers": entries,
            "healthy_count": sum(1 for e in entries if e["healthy"]),
            "cache": state.cache.statistics(),
            "usage_pending": state.usage.pending,
            "usage_dropped": state.usage.dropped,
        }

    @application.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Convert FastAPI's validation errors into our error envelope format."""
        return _error_response(
            422,
            "validation_error",
            "Request validation failed: {}".format(exc.errors()),
        )

    return application


app = create_app()
