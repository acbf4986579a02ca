"""Edge rate limiting middleware.

A coarse fixed-window counter per client IP, applied to every request
before routing. API paths get the base allowance; other paths get a
multiple of it. The route-level ``SecurityGate`` runs independently
behind this layer with its own thresholds.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from tendergate.app.core.logging import get_logger
from tendergate.app.services.security_gate import SECURITY_HEADERS, get_client_ip

logger = get_logger(__name__)

EDGE_HEADERS: Dict[str, str] = {
    **SECURITY_HEADERS,
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}

SKIP_PREFIXES: Tuple[str, ...] = ("/_next/", "/static/", "/favicon.ico")


@dataclass
class EdgeWindow:
    count: int
    reset_at: float


@dataclass
class EdgeDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None


class EdgeRateLimiter:
    """Fixed-window per-IP counter keyed by ``ip:api`` or ``ip:page``.

    Memory optimization:
    - Expired windows are purged once the table grows past ``max_entries``
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        max_api_requests: int = 30,
        window_seconds: float = 60.0,
        page_multiplier: int = 3,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.max_api_requests = max_api_requests
        self.window_seconds = window_seconds
        self.page_multiplier = page_multiplier
        self._max_entries = max_entries
        self._clock = clock
        self._windows: Dict[str, EdgeWindow] = {}

    def limit_for(self, is_api: bool) -> int:
        return self.max_api_requests if is_api else self.max_api_requests * self.page_multiplier

    def cleanup(self) -> int:
        now = self._clock()
        expired = [key for key, w in self._windows.items() if now > w.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def check(self, ip: str, is_api: bool) -> EdgeDecision:
        """Count one request from ``ip`` and decide whether it may pass."""
        now = self._clock()
        key = f"{ip}:{'api' if is_api else 'page'}"
        limit = self.limit_for(is_api)

        if len(self._windows) > self._max_entries:
            self.cleanup()

        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            window = EdgeWindow(count=1, reset_at=now + self.window_seconds)
            self._windows[key] = window
            return EdgeDecision(True, limit, limit - 1, window.reset_at)

        if window.count >= limit:
            return EdgeDecision(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=window.reset_at,
                retry_after=max(1, math.ceil(window.reset_at - now)),
            )

        window.count += 1
        return EdgeDecision(True, limit, limit - window.count, window.reset_at)

    def __len__(self) -> int:
        return len(self._windows)


class EdgeMiddleware(BaseHTTPMiddleware):
    """Applies the edge limiter and attaches hardening headers.

    Usage:
        app.add_middleware(EdgeMiddleware, limiter=EdgeRateLimiter())
    """

    def __init__(self, app, limiter: Optional[EdgeRateLimiter] = None):
        super().__init__(app)
        self.limiter = limiter if limiter is not None else EdgeRateLimiter()

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path.startswith(SKIP_PREFIXES):
            return await call_next(request)

        client_host = request.client.host if request.client else None
        ip = get_client_ip(request.headers, client_host)
        decision = self.limiter.check(ip, is_api=path.startswith("/api/"))

        rate_headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
        }

        if not decision.allowed:
            logger.warning(
                f"Edge rate limit exceeded for {ip} on {path}",
                extra={"client_ip": ip, "path": path},
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded. Please slow down.",
                    "retryAfter": decision.retry_after,
                },
                headers={
                    **EDGE_HEADERS,
                    **rate_headers,
                    "Retry-After": str(decision.retry_after),
                },
            )

        response = await call_next(request)
        for name, value in EDGE_HEADERS.items():
            response.headers[name] = value
        for name, value in rate_headers.items():
            response.headers.setdefault(name, value)
        return response
