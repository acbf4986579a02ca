"""Mock provider for development and testing.

This provider simulates generations without making external API calls.
It is useful for load testing and local development without an API key.

Enable by setting environment variable:
    MOCK_PROVIDER=true
"""

import asyncio
import random
from typing import Any, Optional

from tendergate.app.exceptions import UpstreamThrottled, UpstreamUnknown
from tendergate.app.providers.base import BaseProvider, GenerationRequest


class MockProvider(BaseProvider):
    """Mock provider that returns simulated generations.

    Features:
    - Simulates response delays (configurable)
    - Returns deterministic text derived from the prompt
    - Configurable failure and throttle rates for exercising error handling
    """

    def __init__(
        self,
        base_url: str = "http://mock.provider",
        api_key: str = "mock-key",
        http_client: Optional[Any] = None,
        timeout: float = 30.0,
        default_model: str = "mock-model",
        min_delay: float = 0.05,
        max_delay: float = 0.2,
        failure_rate: float = 0.0,
        throttle_rate: float = 0.0,
    ):
        """Initialize the mock provider.

        Args:
            min_delay: Minimum response delay in seconds
            max_delay: Maximum response delay in seconds
            failure_rate: Probability of a simulated 5xx failure (0-1)
            throttle_rate: Probability of a simulated 429 (0-1)
        """
        super().__init__(base_url, api_key, http_client, timeout, default_model)
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate
        self.throttle_rate = throttle_rate
        self.calls = 0

    def _generate_text(self, request: GenerationRequest) -> str:
        prompt = request.prompt or ""
        lowered = prompt.lower()
        if "tender" in lowered:
            return (
                "Mock tender summary: eligibility criteria, bid deadline and "
                "earnest money deposit were not evaluated in mock mode."
            )
        if request.generation_config and request.generation_config.get(
            "responseMimeType"
        ) == "application/json":
            return "[]"
        return f"Mock response for {len(prompt)} characters of input."

    async def generate_content(self, request: GenerationRequest) -> str:
        self.calls += 1
        await asyncio.sleep(random.uniform(self.min_delay, self.max_delay))

        roll = random.random()
        if roll < self.throttle_rate:
            raise UpstreamThrottled("429 simulated quota exceeded")
        if roll < self.throttle_rate + self.failure_rate:
            raise UpstreamUnknown("Simulated provider failure")

        return self._generate_text(request)

    async def health_check(self, timeout: float = 2.0) -> bool:
        await asyncio.sleep(0.01)
        return True
