"""Middleware package for the gateway."""

from tendergate.app.middleware.auth import require_admin
from tendergate.app.middleware.edge import EdgeMiddleware, EdgeRateLimiter
from tendergate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from tendergate.app.middleware.request_size import RequestSizeLimitMiddleware

__all__ = [
    "require_admin",
    "EdgeMiddleware",
    "EdgeRateLimiter",
    "RequestIdMiddleware",
    "get_request_id",
    "RequestSizeLimitMiddleware",
]
