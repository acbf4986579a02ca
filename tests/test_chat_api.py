"""Tests for the /api/chat endpoints."""

import pytest

from tendergate.app.middleware.edge import EDGE_HEADERS
from tendergate.app.providers.mock import MockProvider


class TestChatPost:
    """POST /api/chat."""

    def test_success_envelope(self, make_client):
        client = make_client()

        resp = client.post("/api/chat", json={"prompt": "Hello"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"] == "Mock response for 5 characters of input."
        assert body["metadata"]["model"] == "mock-model"
        assert body["metadata"]["cached"] is False
        assert body["metadata"]["timestamp"]
        assert resp.headers["X-RateLimit-Remaining"] == "29"
        assert "X-Request-ID" in resp.headers

    def test_model_in_body_is_reported(self, make_client):
        resp = make_client().post("/api/chat", json={"prompt": "Hi", "model": "gemini-2.5-pro"})

        assert resp.json()["metadata"]["model"] == "gemini-2.5-pro"

    def test_contents_instead_of_prompt(self, make_client):
        resp = make_client().post(
            "/api/chat",
            json={"contents": [{"role": "user", "parts": [{"text": "Hi"}]}]},
        )

        assert resp.status_code == 200
        assert resp.json()["success"] is True

    def test_identical_request_is_cached(self, make_client):
        client = make_client()
        client.post("/api/chat", json={"prompt": "Same question"})

        resp = client.post("/api/chat", json={"prompt": "Same question"})

        assert resp.json()["metadata"]["cached"] is True

    def test_prompt_is_sanitized_before_upstream(self, make_client):
        resp = make_client().post("/api/chat", json={"prompt": "<b>"})

        # "&lt;b&gt;" is 9 characters
        assert resp.json()["data"] == "Mock response for 9 characters of input."

    def test_security_headers_present(self, make_client):
        resp = make_client().post("/api/chat", json={"prompt": "Hello"})

        for name, value in EDGE_HEADERS.items():
            assert resp.headers[name] == value

    def test_cors_allowed_origin(self, make_client):
        resp = make_client().post(
            "/api/chat",
            json={"prompt": "Hello"},
            headers={"Origin": "http://localhost:3000"},
        )

        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

    def test_cors_disallowed_origin(self, make_client):
        resp = make_client().post(
            "/api/chat",
            json={"prompt": "Hello"},
            headers={"Origin": "https://evil.example"},
        )

        assert "Access-Control-Allow-Origin" not in resp.headers


class TestChatErrors:
    """Error envelopes."""

    def test_invalid_json(self, make_client):
        resp = make_client().post(
            "/api/chat",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Invalid JSON body"}

    def test_missing_prompt_and_contents(self, make_client):
        resp = make_client().post("/api/chat", json={"model": "gemini-2.5-flash"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Prompt or contents required"

    def test_empty_model_is_rejected(self, make_client):
        resp = make_client().post("/api/chat", json={"prompt": "Hi", "model": ""})

        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid request fields")

    def test_upstream_not_configured(self, make_client):
        resp = make_client(provider=None).post("/api/chat", json={"prompt": "Hello"})

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "API not configured"}

    def test_upstream_throttle_uses_public_message(self, make_client):
        client = make_client(provider=MockProvider(min_delay=0, max_delay=0, throttle_rate=1.0), max_retries=1)

        resp = client.post("/api/chat", json={"prompt": "Hello"})

        assert resp.status_code == 429
        assert resp.json()["error"] == "API rate limit exceeded. Please try again later."
        assert resp.json()["retryAfter"] == 60
        assert resp.headers["Retry-After"] == "60"

    def test_debug_mode_exposes_upstream_message(self, make_client):
        client = make_client(
            provider=MockProvider(min_delay=0, max_delay=0, failure_rate=1.0),
            max_retries=1,
            debug=True,
        )

        resp = client.post("/api/chat", json={"prompt": "Hello"})

        assert resp.status_code == 500
        assert resp.json()["error"] == "Simulated provider failure"

    def test_repeated_failures_open_the_circuit(self, make_client):
        client = make_client(
            provider=MockProvider(min_delay=0, max_delay=0, failure_rate=1.0),
            max_retries=1,
            failure_threshold=2,
        )
        client.post("/api/chat", json={"prompt": "a"})
        client.post("/api/chat", json={"prompt": "b"})

        resp = client.post("/api/chat", json={"prompt": "c"})

        assert resp.status_code == 503
        assert resp.json()["error"].startswith("Service temporarily unavailable")
        assert int(resp.headers["Retry-After"]) > 0

    def test_oversized_body_is_413(self, make_client):
        resp = make_client().post(
            "/api/chat",
            content=b'{"prompt": "' + b"x" * (10 * 1024) + b'"}',
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 413
        assert resp.json()["success"] is False

    def test_suspicious_request_is_400_with_errors(self, make_client):
        resp = make_client().get("/api/chat?q=" + "a" * 2100)

        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "Bad Request",
            "errors": ["URL too long"],
        }

    @pytest.mark.parametrize("query", ["<script>alert(1)</script>", "x' or 1=1"])
    def test_encoded_attack_in_query_is_rejected(self, make_client, query):
        resp = make_client().get("/api/chat", params={"q": query})

        assert resp.status_code == 400
        assert resp.json()["errors"] == ["Suspicious pattern detected in URL"]

    def test_burst_blocks_ip(self, make_client):
        client = make_client(gate_burst_limit=2)
        for _ in range(2):
            assert client.post("/api/chat", json={"prompt": "Hello"}).status_code == 200

        resp = client.post("/api/chat", json={"prompt": "Hello"})

        assert resp.status_code == 429
        assert resp.json() == {"success": False, "error": "Too Many Requests", "retryAfter": 300}
        assert resp.headers["Retry-After"] == "300"

    def test_edge_limiter_runs_before_routes(self, make_client):
        client = make_client(edge_max_api_requests=2)
        client.get("/api/chat")
        client.get("/api/chat")

        resp = client.get("/api/chat")

        assert resp.status_code == 429
        assert resp.json()["message"] == "Rate limit exceeded. Please slow down."


class TestChatGetAndOptions:
    """GET health probe and CORS preflight."""

    def test_get_health_probe(self, make_client):
        resp = make_client().get("/api/chat")

        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert resp.json()["timestamp"]

    def test_get_works_without_upstream(self, make_client):
        assert make_client(provider=None).get("/api/chat").status_code == 200

    def test_cors_preflight(self, make_client):
        resp = make_client().options(
            "/api/chat",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

    def test_plain_options_returns_security_headers(self, make_client):
        resp = make_client().options("/api/chat", headers={"Origin": "http://localhost:3000"})

        assert resp.status_code == 200
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]
