"""Provider factory for creating the upstream provider from settings."""

from enum import Enum
from typing import Optional

import httpx

from tendergate.app.core.config import Settings
from tendergate.app.core.logging import get_logger
from tendergate.app.providers.base import BaseProvider
from tendergate.app.providers.gemini import GeminiProvider
from tendergate.app.providers.mock import MockProvider

logger = get_logger(__name__)


class ProviderType(str, Enum):
    """Supported provider types."""
    GEMINI = "gemini"
    MOCK = "mock"


def resolve_provider_type(settings: Settings) -> Optional[ProviderType]:
    """Pick the provider type, or None when nothing usable is configured."""
    if settings.mock_provider:
        return ProviderType.MOCK
    if settings.gemini_api_key:
        return ProviderType.GEMINI
    return None


def create_provider(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[BaseProvider]:
    """Create the upstream provider described by ``settings``.

    Returns:
        A provider instance, or None if no API key is configured and mock
        mode is off. Routes answer "API not configured" in that case.
    """
    provider_type = resolve_provider_type(settings)

    if provider_type is ProviderType.MOCK:
        logger.info("Using mock upstream provider")
        return MockProvider()

    if provider_type is ProviderType.GEMINI:
        logger.info(f"Using Gemini provider (default model: {settings.default_model})")
        return GeminiProvider(
            base_url=settings.gemini_base_url,
            api_key=settings.gemini_api_key,
            http_client=http_client,
            timeout=settings.upstream_timeout,
            default_model=settings.default_model,
        )

    logger.error("No upstream API key configured; generation endpoints are disabled")
    return None
