"""Async client for the TenderGate chat endpoint.

The client keeps its own small request budget and honors the server's
``Retry-After`` on 429, so a well-behaved caller rarely reaches the
server-side limits at all.

Example:
    async with TenderGateClient("http://localhost:8000") as client:
        text = await client.generate(prompt="Summarize this tender")
"""

import asyncio
import math
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from tendergate.app.core.logging import get_logger
from tendergate.app.providers.retry import RetryPolicy
from tendergate.app.services.sliding_log import SlidingLogLimiter

logger = get_logger(__name__)


class ClientError(Exception):
    """Base class for client-side failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ClientRateLimited(ClientError):
    """The local budget is spent, or the server asked us to back off."""

    def __init__(self, message: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(message)


class ClientAPIError(ClientError):
    """The server answered with an error, or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TenderGateClient:
    """Client with local rate limiting and retries on server errors.

    - at most ``max_requests_per_minute`` calls per rolling minute
    - a 429 blocks the client for the server's ``Retry-After`` (default 60s)
    - 5xx responses and network errors are retried with exponential backoff
    """

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        max_requests_per_minute: int = 20,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.policy = RetryPolicy(
            max_attempts=max_retries + 1,
            base_delay=base_delay,
            max_delay=max_delay,
        )
        self._limiter = SlidingLogLimiter(max_requests_per_minute, 60.0, clock=clock)
        self._clock = clock
        self._sleep = sleep
        self._blocked_until: Optional[float] = None
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "TenderGateClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    def _check_block(self) -> None:
        if self._blocked_until is None:
            return
        remaining = self._blocked_until - self._clock()
        if remaining > 0:
            retry_after = math.ceil(remaining)
            raise ClientRateLimited(
                f"Rate limit exceeded. Please wait {retry_after} seconds.", retry_after
            )
        self._blocked_until = None

    def block_for(self, seconds: float) -> None:
        self._blocked_until = self._clock() + seconds

    async def _post(self, url: str, body: Dict[str, Any]) -> httpx.Response:
        """POST with retries on 5xx and network errors."""
        for attempt in range(self.max_retries + 1):
            can_retry = attempt < self.max_retries
            try:
                resp = await self._http_client.post(url, json=body, timeout=self.timeout)
            except httpx.TimeoutException as e:
                raise ClientAPIError("Request timed out. Please try again.") from e
            except httpx.TransportError as e:
                if not can_retry:
                    raise ClientAPIError(f"Network error: {e}") from e
                delay = self.policy.base_delay * (2 ** attempt)
                logger.warning(f"Network error, retrying in {delay:.2f}s: {e}")
                await self._sleep(delay)
                continue

            if resp.status_code >= 500 and can_retry:
                delay = self.policy.calculate_delay(attempt, throttled=True)
                logger.warning(f"Server error {resp.status_code}, retrying in {delay:.2f}s")
                await self._sleep(delay)
                continue
            return resp

        # Unreachable: the final attempt always returns or raises
        raise ClientAPIError("Request failed")

    async def generate(
        self,
        prompt: Optional[str] = None,
        contents: Any = None,
        model: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Call ``POST /api/chat`` and return the generated text.

        Raises:
            ClientRateLimited: Local budget spent or server returned 429
            ClientAPIError: Any other failure
            ValueError: Neither prompt nor contents given
        """
        self._check_block()
        if not prompt and not contents:
            raise ValueError("Prompt or contents required")

        decision = self._limiter.hit("default")
        if not decision.allowed:
            raise ClientRateLimited(
                f"Rate limit exceeded. Please wait {decision.retry_after} seconds.",
                decision.retry_after,
            )

        body: Dict[str, Any] = {"prompt": prompt, "contents": contents, "model": model}
        if tools is not None:
            body["tools"] = tools
        if generation_config is not None:
            body["generationConfig"] = generation_config

        resp = await self._post(f"{self.base_url}/api/chat", body)

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code == 429:
            try:
                retry_after = int(resp.headers.get("Retry-After", "60"))
            except ValueError:
                retry_after = 60
            self.block_for(retry_after)
            raise ClientRateLimited(
                data.get("error") or f"Rate limited. Retry after {retry_after} seconds.",
                retry_after,
            )

        if resp.status_code >= 400:
            raise ClientAPIError(data.get("error") or f"API Error: {resp.status_code}", resp.status_code)
        if not data.get("success"):
            raise ClientAPIError(data.get("error") or "Unknown API error", resp.status_code)
        return data["data"]

    def get_status(self) -> Dict[str, Any]:
        blocked_for = 0
        if self._blocked_until is not None:
            blocked_for = max(0, math.ceil(self._blocked_until - self._clock()))
        return {
            "blocked_for": blocked_for,
            "max_requests_per_minute": self._limiter.max_requests,
        }
