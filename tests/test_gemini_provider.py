"""Tests for the Gemini REST provider."""

import json

import httpx
import pytest
import respx

from tendergate.app.exceptions import (
    UpstreamAuthFailed,
    UpstreamInvalidRequest,
    UpstreamThrottled,
    UpstreamTimeout,
    UpstreamUnknown,
)
from tendergate.app.providers.base import GenerationRequest
from tendergate.app.providers.gemini import GeminiProvider, build_contents, extract_text

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
FLASH_URL = f"{BASE_URL}/models/gemini-2.5-flash:generateContent"


def ok_body(*texts: str) -> dict:
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": t} for t in texts]}}
        ]
    }


def make_provider(http_client=None) -> GeminiProvider:
    return GeminiProvider(base_url=BASE_URL, api_key="test-key", http_client=http_client)


class TestBuildContents:
    """Normalizing prompts and loose payloads."""

    def test_prompt(self):
        assert build_contents(GenerationRequest(prompt="hi")) == [
            {"role": "user", "parts": [{"text": "hi"}]}
        ]

    def test_string_contents(self):
        assert build_contents(GenerationRequest(contents="hi")) == [
            {"role": "user", "parts": [{"text": "hi"}]}
        ]

    def test_list_of_parts(self):
        pdf = {"inlineData": {"mimeType": "application/pdf", "data": "JVBERi0="}}

        contents = build_contents(GenerationRequest(contents=[pdf, "Summarize"]))

        assert contents == [{"role": "user", "parts": [pdf, {"text": "Summarize"}]}]

    def test_full_contents_pass_through(self):
        full = [
            {"role": "user", "parts": [{"text": "a"}]},
            {"role": "model", "parts": [{"text": "b"}]},
        ]

        assert build_contents(GenerationRequest(contents=full)) == full

    def test_single_content_dict(self):
        content = {"role": "user", "parts": [{"text": "a"}]}

        assert build_contents(GenerationRequest(contents=content)) == [content]

    def test_missing_content_is_invalid(self):
        with pytest.raises(UpstreamInvalidRequest):
            build_contents(GenerationRequest())


class TestExtractText:
    def test_joins_parts_of_first_candidate(self):
        assert extract_text(ok_body("Hello, ", "world")) == "Hello, world"

    def test_blocked_prompt(self):
        with pytest.raises(UpstreamInvalidRequest, match="SAFETY"):
            extract_text({"promptFeedback": {"blockReason": "SAFETY"}})

    def test_no_candidates(self):
        with pytest.raises(UpstreamUnknown):
            extract_text({})


class TestGenerateContent:
    """HTTP calls against a mocked upstream."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_sends_key_and_payload(self):
        route = respx.post(FLASH_URL).mock(return_value=httpx.Response(200, json=ok_body("Answer")))
        request = GenerationRequest(
            prompt="What is EMD?",
            tools=[{"googleSearch": {}}],
            generation_config={"temperature": 0.2},
        )

        async with httpx.AsyncClient() as client:
            text = await make_provider(client).generate_content(request)

        assert text == "Answer"
        sent = route.calls.last.request
        assert sent.headers["x-goog-api-key"] == "test-key"
        body = json.loads(sent.content)
        assert body["contents"][0]["parts"][0]["text"] == "What is EMD?"
        assert body["tools"] == [{"googleSearch": {}}]
        assert body["generationConfig"] == {"temperature": 0.2}

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_model_selects_endpoint(self):
        route = respx.post(f"{BASE_URL}/models/gemini-2.5-pro:generateContent").mock(
            return_value=httpx.Response(200, json=ok_body("pro"))
        )

        text = await make_provider().generate_content(
            GenerationRequest(prompt="x", model="gemini-2.5-pro")
        )

        assert text == "pro"
        assert route.called

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (429, UpstreamThrottled),
        (401, UpstreamAuthFailed),
        (403, UpstreamAuthFailed),
        (400, UpstreamInvalidRequest),
        (504, UpstreamTimeout),
        (500, UpstreamUnknown),
        (503, UpstreamUnknown),
    ])
    async def test_status_mapping(self, respx_mock, status, error):
        respx_mock.post(FLASH_URL).mock(
            return_value=httpx.Response(status, json={"error": {"message": "upstream says no"}})
        )

        with pytest.raises(error):
            await make_provider().generate_content(GenerationRequest(prompt="x"))

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_request_keeps_upstream_message(self):
        respx.post(FLASH_URL).mock(
            return_value=httpx.Response(400, json={"error": {"message": "contents is empty"}})
        )

        with pytest.raises(UpstreamInvalidRequest) as exc_info:
            await make_provider().generate_content(GenerationRequest(prompt="x"))

        assert exc_info.value.message == "contents is empty"

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_timeout(self):
        respx.post(FLASH_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(UpstreamTimeout):
            await make_provider().generate_content(GenerationRequest(prompt="x"))

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error(self):
        respx.post(FLASH_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(UpstreamUnknown):
            await make_provider().generate_content(GenerationRequest(prompt="x"))

    @pytest.mark.asyncio
    @respx.mock
    async def test_health_check(self):
        respx.get(f"{BASE_URL}/models").mock(return_value=httpx.Response(200, json={"models": []}))

        assert await make_provider().health_check() is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_health_check_failure(self):
        respx.get(f"{BASE_URL}/models").mock(side_effect=httpx.ConnectError("refused"))

        assert await make_provider().health_check() is False
