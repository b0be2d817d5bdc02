"""FastAPI application entrypoint for the Code Explainer backend."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from code_explainer.api.routes import api_router
from code_explainer.core.config import Settings, get_settings
from code_explainer.deps import get_app_settings, get_audit_logger
from code_explainer.services.audit import AuditRecord
from code_explainer.services.clock import Clock
from code_explainer.services.rate_limit import RateConfig, ServerRateLimiter

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"


async def _sweep_rate_limiter(limiter: ServerRateLimiter, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        limiter.evict_stale()


def build_rate_limiter(settings: Settings, *, clock: Clock | None = None) -> ServerRateLimiter:
    return ServerRateLimiter(
        RateConfig(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        clock=clock,
        fallback_key=settings.rate_limit_fallback_key,
    )


def create_app(
    settings: Settings | None = None, *, rate_limiter: ServerRateLimiter | None = None
) -> FastAPI:
    """Build the application and the rate limiter state it owns."""

    settings = settings or get_settings()
    limiter = rate_limiter or build_rate_limiter(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper: asyncio.Task | None = None
        interval = settings.rate_limit_sweep_interval_seconds
        if interval > 0:
            sweeper = asyncio.create_task(_sweep_rate_limiter(app.state.rate_limiter, interval))
        logger.info(
            "Starting Code Explainer API",
            extra={
                "rate_limit_max_requests": limiter.config.max_requests,
                "rate_limit_window_seconds": limiter.config.window_seconds,
            },
        )
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(title="Code Explainer API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check() -> HealthResponse:
        """Return service health information for monitoring and load-balancers."""
        return HealthResponse()

    @app.middleware("http")
    async def audit_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        try:
            audit_logger = get_audit_logger(get_app_settings(request))
            await audit_logger.log(
                AuditRecord(
                    request_id=request_id,
                    method=request.method,
                    path=str(request.url.path),
                    status_code=response.status_code,
                    duration_ms=elapsed_ms,
                    ip=request.client.host if request.client else None,
                    user_agent=request.headers.get("user-agent"),
                    rate_limit_key=getattr(request.state, "rate_limit_key", None),
                )
            )
        except OSError:
            # Never block or crash request due to audit failure
            logger.warning("Failed to write audit record", exc_info=True)
        response.headers["X-Request-Id"] = request_id
        return response

    return app


app = create_app()
