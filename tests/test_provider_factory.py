"""Tests for provider selection and the mock provider."""

import httpx
import pytest

from tendergate.app.core.config import Settings
from tendergate.app.exceptions import UpstreamThrottled, UpstreamUnknown
from tendergate.app.providers.base import GenerationRequest
from tendergate.app.providers.factory import ProviderType, create_provider, resolve_provider_type
from tendergate.app.providers.gemini import GeminiProvider
from tendergate.app.providers.mock import MockProvider


def make_settings(**overrides) -> Settings:
    params = {"gemini_api_key": "", "mock_provider": False}
    params.update(overrides)
    return Settings(_env_file=None, **params)


class TestResolveProviderType:
    def test_provider_type_values(self):
        assert ProviderType.GEMINI.value == "gemini"
        assert ProviderType.MOCK.value == "mock"

    def test_nothing_configured(self):
        assert resolve_provider_type(make_settings()) is None

    def test_api_key_selects_gemini(self):
        assert resolve_provider_type(make_settings(gemini_api_key="k")) is ProviderType.GEMINI

    def test_mock_wins_over_api_key(self):
        settings = make_settings(gemini_api_key="k", mock_provider=True)

        assert resolve_provider_type(settings) is ProviderType.MOCK


class TestCreateProvider:
    def test_returns_none_without_key(self):
        assert create_provider(make_settings()) is None

    @pytest.mark.asyncio
    async def test_gemini_uses_settings_and_shared_client(self):
        settings = make_settings(
            gemini_api_key="secret",
            default_model="gemini-2.5-pro",
            upstream_timeout=12.0,
        )
        async with httpx.AsyncClient() as client:
            provider = create_provider(settings, client)

            assert isinstance(provider, GeminiProvider)
            assert provider.http_client is client
            assert provider.api_key == "secret"
            assert provider.default_model == "gemini-2.5-pro"
            assert provider.timeout == 12.0
            assert provider.headers["x-goog-api-key"] == "secret"

    def test_mock_provider(self):
        assert isinstance(create_provider(make_settings(mock_provider=True)), MockProvider)


class TestMockProvider:
    @pytest.mark.asyncio
    async def test_deterministic_text(self):
        provider = MockProvider(min_delay=0, max_delay=0)

        text = await provider.generate_content(GenerationRequest(prompt="abc"))

        assert text == "Mock response for 3 characters of input."
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_json_mime_type_returns_empty_array(self):
        provider = MockProvider(min_delay=0, max_delay=0)

        text = await provider.generate_content(
            GenerationRequest(prompt="list", generation_config={"responseMimeType": "application/json"})
        )

        assert text == "[]"

    @pytest.mark.asyncio
    async def test_simulated_failures(self):
        throttled = MockProvider(min_delay=0, max_delay=0, throttle_rate=1.0)
        failing = MockProvider(min_delay=0, max_delay=0, failure_rate=1.0)

        with pytest.raises(UpstreamThrottled):
            await throttled.generate_content(GenerationRequest(prompt="x"))
        with pytest.raises(UpstreamUnknown):
            await failing.generate_content(GenerationRequest(prompt="x"))

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert await MockProvider().health_check() is True
