"""Custom exceptions for the gateway application."""

from typing import Optional


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their
    status_code for consistent HTTP response handling. ``retry_after``
    (seconds) is sent to the caller as a hint when set.
    """
    status_code: int = 500
    retry_after: Optional[int] = None

    def __init__(self, message: str = "Gateway error", retry_after: Optional[int] = None):
        self.message = message
        if retry_after is not None:
            self.retry_after = retry_after
        super().__init__(message)


# Admission ---------------------------------------------------------------

class AdmissionRejected(GatewayException):
    """A request was refused before reaching the upstream provider."""
    status_code = 429


class DailyLimitExceeded(AdmissionRejected):
    """Raised when the per-day upstream call budget is spent.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        message: str = "Daily API limit reached. Please try again tomorrow.",
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, retry_after)


class QueueFull(AdmissionRejected):
    """Raised when the request queue has no free slots.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    retry_after = 5

    def __init__(self, message: str = "Request queue is full. Please try again later."):
        super().__init__(message)


class QueueTimeout(AdmissionRejected):
    """Raised when a queued request waits longer than the queue timeout.

    Maps to HTTP 504 Gateway Timeout.
    """
    status_code = 504

    def __init__(self, message: str = "Request timed out in queue"):
        super().__init__(message)


class CircuitOpen(GatewayException):
    """Raised while the circuit breaker is failing fast.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, retry_after: int):
        super().__init__(
            f"Service temporarily unavailable. Please try again in {retry_after} seconds.",
            retry_after,
        )


class RequestBlocked(GatewayException):
    """Raised when the security gate refuses a request.

    Status is 400 for malformed/suspicious requests and 429 for rate
    limit violations.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 429,
        retry_after: Optional[int] = None,
        errors: Optional[list[str]] = None,
    ):
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message, retry_after)


# Upstream ----------------------------------------------------------------

class UpstreamError(GatewayException):
    """Base class for failures reported by the upstream provider."""
    status_code = 500
    retryable: bool = False


class UpstreamThrottled(UpstreamError):
    """Upstream answered 429 / quota exceeded. Retried with backoff."""
    status_code = 429
    retry_after = 60
    retryable = True


class UpstreamAuthFailed(UpstreamError):
    """Upstream rejected the API credential. Never retried."""
    status_code = 401


class UpstreamInvalidRequest(UpstreamError):
    """Upstream rejected the request payload. Message is passed through."""
    status_code = 400


class UpstreamTimeout(UpstreamError):
    """No upstream response within the deadline."""
    status_code = 504
    retryable = True


class UpstreamUnknown(UpstreamError):
    """Generic 5xx or unclassified upstream failure."""
    status_code = 500
    retryable = True


class UpstreamNotConfigured(GatewayException):
    """No upstream credential is configured, so nothing can be generated."""
    status_code = 500

    def __init__(self, message: str = "API not configured"):
        super().__init__(message)
