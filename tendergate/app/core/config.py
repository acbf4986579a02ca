import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(raw: Any) -> list[str]:
    """Parse a list-valued env var given as JSON or comma/space separated text."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate plain text so a typo doesn't crash startup.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    seen: set[str] = set()
    result: list[str] = []
    for part in parts:
        if part in seen:
            continue
        seen.add(part)
        result.append(part)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Edge and route limiter knobs are independent on purpose; they guard
    different layers and are tuned separately.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Upstream (Gemini) settings
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    default_model: str = "gemini-2.5-flash"
    upstream_timeout: float = 30.0
    mock_provider: bool = False

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 50
    httpx_max_keepalive_connections: int = 10

    # Token bucket limiter (upstream call budget)
    max_requests_per_minute: int = 15
    max_requests_per_day: int = 1000

    # Circuit breaker
    failure_threshold: int = 5
    circuit_reset_seconds: float = 60.0

    # Request queue
    max_queue_size: int = 50
    max_concurrent: int = 3
    queue_timeout_seconds: float = 30.0

    # Response cache
    cache_enabled: bool = True
    cache_ttl_seconds: float = 300.0
    max_cache_size: int = 100

    # Retry
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Route-level security gate (per IP)
    gate_window_seconds: float = 60.0
    gate_max_requests: int = 30
    gate_burst_limit: int = 10
    gate_burst_window_seconds: float = 5.0
    gate_block_duration_seconds: float = 300.0
    gate_block_bots: bool = False
    gate_max_url_length: int = 2048
    max_body_size: int = 10 * 1024
    sweep_interval_seconds: float = 60.0
    blocked_ips: Annotated[list[str], NoDecode] = []

    # Edge limiter (coarse, per IP, all paths)
    edge_max_api_requests: int = 30
    edge_window_seconds: float = 60.0
    edge_page_multiplier: int = 3

    # PDF analysis route
    pdf_max_requests_per_hour: int = 10
    pdf_cache_ttl_seconds: float = 24 * 60 * 60
    pdf_max_size_mb: float = 10.0

    # CORS
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]

    # Admin endpoints are disabled while this is empty
    admin_token: str = ""

    @field_validator("allowed_origins", "blocked_ips", mode="before")
    @classmethod
    def decode_list(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator(
        "max_requests_per_minute",
        "max_requests_per_day",
        "failure_threshold",
        "max_queue_size",
        "max_concurrent",
        "max_cache_size",
        "max_retries",
        "gate_max_requests",
        "gate_burst_limit",
        "edge_max_api_requests",
        "edge_page_multiplier",
        "pdf_max_requests_per_hour",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate count-like values are at least 1."""
        if v < 1:
            raise ValueError("Limit values must be at least 1")
        return v

    @field_validator(
        "upstream_timeout",
        "circuit_reset_seconds",
        "queue_timeout_seconds",
        "cache_ttl_seconds",
        "retry_base_delay",
        "retry_max_delay",
        "gate_window_seconds",
        "gate_burst_window_seconds",
        "gate_block_duration_seconds",
        "sweep_interval_seconds",
        "edge_window_seconds",
        "pdf_cache_ttl_seconds",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
