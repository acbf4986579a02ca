"""Request-protection pipeline in front of the upstream provider.

One call to ``ProtectionPipeline.generate()`` passes through, in order:

    CircuitBreaker gate -> ResponseCache lookup -> RequestQueue admission
    -> (TokenBucketLimiter.acquire + provider call) under RetryExecutor
    -> ResponseCache store

The pipeline owns no globals. It is built once per application in the
lifespan via ``build_pipeline()`` and shared through ``app.state``.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from tendergate.app.core.config import Settings
from tendergate.app.core.logging import get_logger
from tendergate.app.exceptions import CircuitOpen
from tendergate.app.providers.base import BaseProvider, GenerationRequest
from tendergate.app.providers.retry import RetryExecutor, RetryPolicy
from tendergate.app.services.circuit_breaker import CircuitBreaker
from tendergate.app.services.request_queue import RequestQueue
from tendergate.app.services.response_cache import ResponseCache
from tendergate.app.services.token_bucket import TokenBucketLimiter

logger = get_logger(__name__)


@dataclass
class GenerationResult:
    text: str
    model: str
    cached: bool = False
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class ProtectionPipeline:
    """Composes the protection components around a single provider."""

    def __init__(
        self,
        provider: BaseProvider,
        limiter: TokenBucketLimiter,
        breaker: CircuitBreaker,
        queue: RequestQueue,
        retry: RetryExecutor,
        cache: Optional[ResponseCache] = None,
        upstream_timeout: float = 30.0,
    ):
        """Initialize the pipeline.

        Args:
            provider: Upstream provider performing the generation
            limiter: Upstream call budget, acquired once per attempt
            breaker: Circuit breaker shared with ``retry``
            queue: Concurrency-bounded admission queue
            retry: Retry executor reporting to ``breaker``
            cache: Response cache, or None to disable caching
            upstream_timeout: Deadline for a single upstream attempt (seconds)
        """
        self.provider = provider
        self.limiter = limiter
        self.breaker = breaker
        self.queue = queue
        self.retry = retry
        self.cache = cache
        self.upstream_timeout = upstream_timeout

    async def _attempt(self, request: GenerationRequest) -> str:
        await self.limiter.acquire()
        return await asyncio.wait_for(
            self.provider.generate_content(request),
            timeout=self.upstream_timeout,
        )

    async def generate(
        self,
        request: GenerationRequest,
        use_cache: bool = True,
    ) -> GenerationResult:
        """Run one protected generation.

        Args:
            request: The generation request
            use_cache: Set False when the caller caches under its own key

        Returns:
            GenerationResult with the generated text

        Raises:
            CircuitOpen: If the breaker is failing fast
            AdmissionRejected: Daily cap reached, queue full or queue timeout
            UpstreamError: Classified error of the final upstream attempt
        """
        model = self.provider.resolve_model(request)

        if not self.breaker.can_request():
            retry_after = self.breaker.retry_after()
            logger.warning(f"Circuit open, rejecting request (retry in {retry_after}s)")
            raise CircuitOpen(retry_after)

        cacheable = (
            use_cache
            and self.cache is not None
            and self.cache.is_cacheable(request)
        )
        if cacheable:
            cached = self.cache.get(request)
            if cached is not None:
                return GenerationResult(text=cached, model=model, cached=True)

        text = await self.queue.add(lambda: self.retry.run(lambda: self._attempt(request)))

        if cacheable:
            self.cache.set(request, text)
            logger.debug("Stored response in cache")

        return GenerationResult(text=text, model=model)

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()
            logger.info("Response cache cleared")

    def get_status(self) -> Dict[str, Any]:
        breaker = self.breaker.get_state()
        return {
            "rate_limit": asdict(self.limiter.get_status()),
            "circuit": {
                "state": breaker.state.value,
                "consecutive_failures": breaker.consecutive_failures,
                "seconds_since_last_failure": breaker.seconds_since_last_failure,
            },
            "cache": self.cache.get_stats() if self.cache is not None else None,
            "queue": self.queue.get_status(),
        }


def build_pipeline(
    settings: Settings,
    provider: BaseProvider,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ProtectionPipeline:
    """Construct a pipeline and its components from settings."""
    breaker = CircuitBreaker(
        failure_threshold=settings.failure_threshold,
        reset_timeout=settings.circuit_reset_seconds,
        clock=clock,
    )
    limiter = TokenBucketLimiter.per_minute(
        settings.max_requests_per_minute,
        settings.max_requests_per_day,
        clock=clock,
        sleep=sleep,
    )
    queue = RequestQueue(
        max_queue_size=settings.max_queue_size,
        max_concurrent=settings.max_concurrent,
        queue_timeout=settings.queue_timeout_seconds,
    )
    retry = RetryExecutor(
        policy=RetryPolicy(
            max_attempts=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        breaker=breaker,
        sleep=sleep,
    )
    cache = None
    if settings.cache_enabled:
        cache = ResponseCache(
            max_size=settings.max_cache_size,
            ttl=settings.cache_ttl_seconds,
            clock=clock,
        )
    return ProtectionPipeline(
        provider=provider,
        limiter=limiter,
        breaker=breaker,
        queue=queue,
        retry=retry,
        cache=cache,
        upstream_timeout=settings.upstream_timeout,
    )
