import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tendergate.app.api.analyze_pdf import pdf_cache_key, router as analyze_pdf_router
from tendergate.app.api.chat import router as chat_router
from tendergate.app.api.status import router as status_router
from tendergate.app.core.config import Settings, settings as default_settings
from tendergate.app.core.http_client import init_http_client
from tendergate.app.core.logging import get_logger, setup_logging
from tendergate.app.exceptions import (
    GatewayException,
    RequestBlocked,
    UpstreamThrottled,
    UpstreamTimeout,
    UpstreamUnknown,
)
from tendergate.app.middleware.edge import EDGE_HEADERS, EdgeMiddleware, EdgeRateLimiter
from tendergate.app.middleware.request_id import RequestIdMiddleware
from tendergate.app.middleware.request_size import RequestSizeLimitMiddleware
from tendergate.app.providers.base import BaseProvider
from tendergate.app.providers.factory import create_provider
from tendergate.app.services.pipeline import build_pipeline
from tendergate.app.services.response_cache import ResponseCache
from tendergate.app.services.security_gate import SecurityGate
from tendergate.app.services.sliding_log import SlidingLogLimiter

# Caller-facing messages; the raw upstream message is only shown in debug mode
PUBLIC_MESSAGES = {
    UpstreamThrottled: "API rate limit exceeded. Please try again later.",
    UpstreamTimeout: "Request timed out. Please try again.",
    UpstreamUnknown: "An error occurred processing your request.",
}


def public_message(exc: GatewayException, debug: bool = False) -> str:
    if debug:
        return exc.message
    return PUBLIC_MESSAGES.get(type(exc), exc.message)


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[BaseProvider] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Protection state (pipeline, security gate, edge limiter, PDF limiter and
    cache) is created per app and kept on ``app.state``.

    Args:
        settings: Settings to use (defaults to the environment-loaded settings)
        provider: Upstream provider; built from settings at startup if omitted
        clock: Time source shared by all time-dependent components

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings

    setup_logging()
    logger = get_logger(__name__)

    gate = SecurityGate(
        window_seconds=settings.gate_window_seconds,
        max_requests=settings.gate_max_requests,
        burst_limit=settings.gate_burst_limit,
        burst_window_seconds=settings.gate_burst_window_seconds,
        block_duration=settings.gate_block_duration_seconds,
        max_url_length=settings.gate_max_url_length,
        block_bots=settings.gate_block_bots,
        blocked_ips=settings.blocked_ips,
        sweep_interval=settings.sweep_interval_seconds,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Opens the shared HTTP connection pool, builds the pipeline when no
        provider was injected, and runs the security gate sweeper.
        """
        async with init_http_client(settings) as http_client:
            if app.state.pipeline is None:
                upstream = create_provider(settings, http_client)
                if upstream is not None:
                    app.state.pipeline = build_pipeline(settings, upstream, clock=clock)

            await gate.start()
            logger.info(
                "Application startup complete",
                extra={
                    "upstream_configured": app.state.pipeline is not None,
                    "debug_mode": settings.debug,
                },
            )

            try:
                yield {"http_client": http_client}
            finally:
                await gate.stop()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="TenderGate",
        description="Protection layer for generative-AI calls: rate limiting, "
                    "circuit breaking, caching, queueing and retries",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.gate = gate
    app.state.pipeline = build_pipeline(settings, provider, clock=clock) if provider is not None else None
    app.state.pdf_limiter = SlidingLogLimiter(
        max_requests=settings.pdf_max_requests_per_hour,
        window_seconds=60 * 60,
        clock=clock,
    )
    app.state.pdf_cache = ResponseCache(
        ttl=settings.pdf_cache_ttl_seconds,
        key_fn=pdf_cache_key,
        clock=clock,
    )

    # Add middleware (order matters: last added = first executed)
    # Edge limiter (innermost - closest to route)
    app.add_middleware(
        EdgeMiddleware,
        limiter=EdgeRateLimiter(
            max_api_requests=settings.edge_max_api_requests,
            window_seconds=settings.edge_window_seconds,
            page_multiplier=settings.edge_page_multiplier,
            clock=clock,
        ),
    )

    app.add_middleware(RequestIdMiddleware)

    # Base64 inflates the PDF by a third; leave room for the JSON envelope
    pdf_body_limit = int(settings.pdf_max_size_mb * 1024 * 1024 * 4 / 3) + 64 * 1024
    app.add_middleware(
        RequestSizeLimitMiddleware,
        max_body_size=settings.max_body_size,
        path_limits={"/api/analyze-pdf": pdf_body_limit},
    )

    # CORS middleware (outermost - handles preflight requests first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining",
                        "X-RateLimit-Reset", "X-Cache"],
        max_age=86400,
    )

    app.include_router(chat_router)
    app.include_router(analyze_pdf_router)
    app.include_router(status_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check with upstream and pipeline component status."""
        pipeline = request.app.state.pipeline
        if pipeline is None:
            return {
                "status": "degraded",
                "components": {"upstream": {"status": "error", "error": "API not configured"}},
            }

        status = pipeline.get_status()
        circuit_state = status["circuit"]["state"]
        queue = status["queue"]
        health_status = {
            "status": "ok" if circuit_state == "CLOSED" else "degraded",
            "components": {
                "upstream": {"status": "ok"},
                "circuit": {"state": circuit_state},
                "queue": {
                    "active_requests": queue["active_requests"],
                    "queue_length": queue["queue_length"],
                },
                "rate_limit": status["rate_limit"],
            },
        }
        return health_status

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Render pipeline, gate and upstream errors as ``{success: false, ...}``."""
        content: dict[str, Any] = {
            "success": False,
            "error": public_message(exc, settings.debug),
        }
        headers = {}
        if exc.retry_after is not None:
            content["retryAfter"] = exc.retry_after
            headers["Retry-After"] = str(exc.retry_after)
        if isinstance(exc, RequestBlocked) and exc.errors:
            content["errors"] = exc.errors

        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__}: {exc.message}",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "path": request.url.path,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback; debug mode adds the exception message and
        type.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={"request_id": request_id},
        )

        content: dict[str, Any] = {
            "success": False,
            "error": "An error occurred processing your request.",
            "request_id": request_id,
        }
        if settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content, headers=EDGE_HEADERS)

    return app


# Create the application instance
app = create_app()
