"""FastAPI entrypoint for the ask/health/metrics endpoints."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StringConstraints
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from support_agent.agent.gateway import AgentError, ModelGateway
from support_agent.agent.orchestrator import AgentOrchestrator
from support_agent.config import AppSettings
from support_agent.knowledge.store import KnowledgeStore
from support_agent.obs.logger import configure_logging
from support_agent.obs.tracing import create_trace_recorder

logger = logging.getLogger(__name__)

_ERROR_CODES = {
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _create_llm(settings: AppSettings) -> Any:
    """Build the chat model; SDK retries are off because the gateway retries."""

    max_tokens = settings.gateway_config().max_tokens
    if settings.anthropic_api_key:
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=settings.anthropic_model,
            api_key=settings.anthropic_api_key,
            max_tokens=max_tokens,
            max_retries=0,
        )

    if settings.openai_api_key:
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            max_tokens=max_tokens,
            max_retries=0,
            temperature=0,
        )

    return None


def build_orchestrator(settings: AppSettings) -> AgentOrchestrator:
    llm = _create_llm(settings)
    if llm is None:
        logger.warning("No ANTHROPIC_API_KEY or OPENAI_API_KEY set; every question will fail with 503")
    return AgentOrchestrator(
        knowledge=KnowledgeStore(settings.knowledge_dir),
        gateway=ModelGateway(llm, settings.gateway_config()),
        tracer=create_trace_recorder(settings.tracing_config()),
    )


class AskRequest(BaseModel):
    question: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)
    ]
    session_id: str | None = None


class AskResponse(BaseModel):
    answer: str
    trace_id: str
    latency_ms: float
    tokens_used: int
    cost_usd: float
    knowledge_chunks: list[str] = Field(default_factory=list)


class RequestMetrics:
    """Process-lifetime request counters exposed on `/metrics`."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.requests_total = 0
        self.errors_total = 0
        self.total_latency_ms = 0.0

    def snapshot(self) -> dict[str, Any]:
        avg_latency = (
            round(self.total_latency_ms / self.requests_total) if self.requests_total else 0
        )
        return {
            "requests_total": self.requests_total,
            "avg_latency_ms": avg_latency,
            "errors_total": self.errors_total,
        }


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def create_app(
    settings: AppSettings | None = None,
    orchestrator: AgentOrchestrator | None = None,
) -> FastAPI:
    """Wire settings, the orchestrator and the HTTP routes into one app."""

    settings = settings or AppSettings()
    orchestrator = orchestrator or build_orchestrator(settings)
    metrics = RequestMetrics()
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level, settings.service_name)
        await orchestrator.knowledge.aload_knowledge()
        logger.info("Service started (model=%s)", orchestrator.gateway.config.model_name)
        yield
        logger.info("Shutting down; flushing traces")
        await orchestrator.tracer.shutdown(settings.tracing_config().shutdown_timeout_seconds)

    app = FastAPI(title="Support Agent", version=settings.app_version, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.metrics = metrics

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next: Any) -> Any:
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > settings.max_body_bytes:
            logger.warning("Rejected oversized body (%s bytes) on %s", length, request.url.path)
            return _error_response(
                413,
                "PAYLOAD_TOO_LARGE",
                f"Request body must be {settings.max_body_bytes} bytes or fewer",
            )
        return await call_next(request)

    # In-memory counters, one store per app.
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit()],
        enabled=settings.rate_limit_enabled,
    )
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
        allow_credentials=True,
    )

    def require_api_key(x_api_key: Annotated[str | None, Header()] = None) -> None:
        if not settings.api_key_required:
            return
        if not x_api_key or x_api_key != settings.api_key:
            logger.warning("Unauthorized API key attempt")
            raise HTTPException(status_code=401, detail="Missing or invalid X-API-Key header")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return _error_response(exc.status_code, _ERROR_CODES.get(exc.status_code, "HTTP_ERROR"), message)

    @app.exception_handler(RateLimitExceeded)
    def rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.warning("Rate limit exceeded ip=%s path=%s", get_remote_address(request), request.url.path)
        return _error_response(
            429,
            "RATE_LIMITED",
            f"Too many requests. Maximum {settings.rate_limit_max} per "
            f"{settings.rate_limit_window_ms // 1000}s window.",
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = str(first.get("loc", ("body",))[-1])
        if field == "question" and first.get("type") == "string_too_long":
            message = "question must be 2000 characters or fewer"
        elif field == "question" or field == "body":
            message = "question is required and must be a non-empty string"
        else:
            message = f"invalid value for {field}"
        return _error_response(400, "INVALID_REQUEST", message)

    @app.post("/api/ask", response_model=AskResponse, dependencies=[Depends(require_api_key)])
    async def ask(request: AskRequest) -> Any:
        metrics.requests_total += 1
        logger.info(
            "Incoming /api/ask question=%r session_id=%s", request.question[:80], request.session_id
        )
        try:
            result = await orchestrator.ask(request.question, session_id=request.session_id)
        except AgentError as exc:
            metrics.errors_total += 1
            logger.error("AgentError in /api/ask: %s", exc)
            return _error_response(
                503,
                "AGENT_UNAVAILABLE",
                "The AI agent is temporarily unavailable. Please try again.",
            )
        except Exception:
            metrics.errors_total += 1
            logger.exception("Unexpected error in /api/ask")
            return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")

        metrics.total_latency_ms += result.latency_ms
        return AskResponse(**result.to_dict())

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "model": orchestrator.gateway.config.model_name,
            "llm_configured": orchestrator.gateway.is_configured,
            "uptime_seconds": int(time.monotonic() - started_at),
            "version": settings.app_version,
        }

    @app.get("/metrics")
    def metrics_endpoint() -> dict[str, Any]:
        return metrics.snapshot()

    return app


app = create_app()
