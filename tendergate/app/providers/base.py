from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx


@dataclass
class GenerationRequest:
    """A single "generate content" call.

    Either ``prompt`` (plain text) or ``contents`` (provider-native content
    payload, e.g. inline PDF parts) must be set.
    """
    prompt: Optional[str] = None
    contents: Any = None
    model: Optional[str] = None
    tools: Optional[List[Dict[str, Any]]] = None
    generation_config: Optional[Dict[str, Any]] = None


class BaseProvider(ABC):
    """Base class for upstream generative-AI providers.

    Subclasses can accept an external httpx.AsyncClient for connection
    pooling, or create their own per call if none is provided.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        default_model: str = "gemini-2.5-flash",
    ):
        """Initialize the provider.

        Args:
            base_url: The API base URL
            api_key: The API key for authentication
            http_client: Optional shared HTTP client for connection pooling
            timeout: Request timeout in seconds
            default_model: Model used when a request does not name one
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.default_model = default_model
        self.headers = self._build_headers()

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        return self._http_client

    def _build_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        # Fallback: create a new client (not recommended for production)
        return httpx.AsyncClient(timeout=self.timeout)

    @asynccontextmanager
    async def _client_context(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        """Yield the shared client, or a per-call client that is closed after use."""
        client = self._get_client()
        is_shared = self._http_client is not None
        try:
            yield client
        finally:
            if not is_shared:
                await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def resolve_model(self, request: GenerationRequest) -> str:
        return request.model or self.default_model

    @abstractmethod
    async def generate_content(self, request: GenerationRequest) -> str:
        """Run one generation and return the generated text.

        Raises:
            UpstreamError: Classified upstream failure
        """
        pass

    @abstractmethod
    async def health_check(self, timeout: float = 2.0) -> bool:
        """Check if the provider is reachable and the credential is accepted."""
        pass
