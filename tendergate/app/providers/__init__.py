"""Upstream providers package.

This package provides:
- Base provider interface (BaseProvider, GenerationRequest)
- Provider implementations (GeminiProvider, MockProvider)
- Provider factory (create_provider, ProviderType)
- Retry mechanism (RetryPolicy, RetryExecutor, classify_error)
"""

from tendergate.app.providers.base import BaseProvider, GenerationRequest
from tendergate.app.providers.factory import ProviderType, create_provider
from tendergate.app.providers.gemini import GeminiProvider
from tendergate.app.providers.mock import MockProvider
from tendergate.app.providers.retry import RetryExecutor, RetryPolicy, classify_error

__all__ = [
    # Base
    "BaseProvider",
    "GenerationRequest",
    # Providers
    "GeminiProvider",
    "MockProvider",
    # Factory
    "ProviderType",
    "create_provider",
    # Retry
    "RetryExecutor",
    "RetryPolicy",
    "classify_error",
]
