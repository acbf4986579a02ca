"""Protection services for the gateway.

This package provides:
- Upstream call budget (TokenBucketLimiter)
- Failure isolation (CircuitBreaker)
- Response memoization (ResponseCache)
- Concurrency-bounded admission (RequestQueue)
- Per-IP request screening (SecurityGate, SlidingLogLimiter)
- Composition of the above (ProtectionPipeline)
"""

from tendergate.app.services.circuit_breaker import CircuitBreaker, CircuitState
from tendergate.app.services.token_bucket import TokenBucketLimiter
from tendergate.app.services.response_cache import ResponseCache
from tendergate.app.services.request_queue import RequestQueue
from tendergate.app.services.security_gate import SecurityGate
from tendergate.app.services.sliding_log import SlidingLogLimiter
from tendergate.app.services.pipeline import ProtectionPipeline, build_pipeline

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "TokenBucketLimiter",
    "ResponseCache",
    "RequestQueue",
    "SecurityGate",
    "SlidingLogLimiter",
    "ProtectionPipeline",
    "build_pipeline",
]
