"""Google Gemini REST provider."""

from typing import Any, Dict, List, Optional

import httpx

from tendergate.app.core.logging import get_logger
from tendergate.app.exceptions import (
    UpstreamAuthFailed,
    UpstreamError,
    UpstreamInvalidRequest,
    UpstreamThrottled,
    UpstreamTimeout,
    UpstreamUnknown,
)
from tendergate.app.providers.base import BaseProvider, GenerationRequest

logger = get_logger(__name__)


def _to_part(item: Any) -> Dict[str, Any]:
    if isinstance(item, str):
        return {"text": item}
    if isinstance(item, dict):
        return item
    return {"text": str(item)}


def build_contents(request: GenerationRequest) -> List[Dict[str, Any]]:
    """Normalize a prompt or loose contents payload into Gemini ``contents``.

    Accepts a plain string, a single part or content dict, a list of parts,
    or an already well-formed list of contents.
    """
    if request.prompt:
        return [{"role": "user", "parts": [{"text": request.prompt}]}]

    contents = request.contents
    if isinstance(contents, str):
        return [{"role": "user", "parts": [{"text": contents}]}]
    if isinstance(contents, dict):
        if "parts" in contents:
            return [contents]
        return [{"role": "user", "parts": [contents]}]
    if isinstance(contents, list):
        if contents and all(isinstance(c, dict) and "parts" in c for c in contents):
            return contents
        return [{"role": "user", "parts": [_to_part(c) for c in contents]}]
    raise UpstreamInvalidRequest("No prompt or contents provided")


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {resp.status_code}"


def raise_for_upstream_status(resp: httpx.Response) -> None:
    """Translate an upstream error response into the gateway taxonomy."""
    status = resp.status_code
    if status < 400:
        return

    message = _error_message(resp)
    if status == 429:
        raise UpstreamThrottled(f"429 quota exceeded: {message}")
    if status in (401, 403):
        raise UpstreamAuthFailed(f"Upstream rejected credentials: {message}")
    if status == 408 or status == 504:
        raise UpstreamTimeout(f"Upstream timeout: {message}")
    if 400 <= status < 500:
        raise UpstreamInvalidRequest(message)
    raise UpstreamUnknown(f"Upstream error {status}: {message}")


def extract_text(data: Dict[str, Any]) -> str:
    """Join the text parts of the first candidate."""
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        reason = feedback.get("blockReason")
        if reason:
            raise UpstreamInvalidRequest(f"Prompt blocked by upstream: {reason}")
        raise UpstreamUnknown("Upstream returned no candidates")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


class GeminiProvider(BaseProvider):
    """Gemini ``generateContent`` provider with shared HTTP client support.

    If http_client is provided, it is used for all requests (connection
    reuse). If not, a new client is created per call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        default_model: str = "gemini-2.5-flash",
    ):
        super().__init__(base_url, api_key, http_client, timeout, default_model)

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"contents": build_contents(request)}
        if request.tools:
            payload["tools"] = request.tools
        if request.generation_config:
            payload["generationConfig"] = request.generation_config
        return payload

    async def generate_content(self, request: GenerationRequest) -> str:
        """Call ``models/{model}:generateContent`` and return the text.

        Raises:
            UpstreamError: Classified by HTTP status or transport failure
        """
        model = self.resolve_model(request)
        url = self._get_endpoint_url(f"/models/{model}:generateContent")
        payload = self.build_payload(request)

        try:
            async with self._client_context() as client:
                resp = await client.post(url, headers=self.headers, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout("Request timeout") from e
        except httpx.TransportError as e:
            raise UpstreamUnknown(f"Upstream network error: {e}") from e

        raise_for_upstream_status(resp)
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamUnknown("Upstream returned invalid JSON") from e
        return extract_text(data)

    async def health_check(self, timeout: float = 2.0) -> bool:
        """Check the provider by listing models with a short timeout."""
        try:
            url = self._get_endpoint_url("/models")
            async with self._client_context() as client:
                resp = await client.get(url, headers=self.headers, timeout=timeout)
                return resp.status_code == 200
        except (httpx.HTTPError, UpstreamError):
            return False
