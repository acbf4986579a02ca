"""Tests for the request-protection pipeline."""

import asyncio

import pytest

from tendergate.app.core.config import Settings
from tendergate.app.exceptions import (
    CircuitOpen,
    DailyLimitExceeded,
    UpstreamThrottled,
    UpstreamTimeout,
    UpstreamUnknown,
)
from tendergate.app.providers.base import BaseProvider, GenerationRequest
from tendergate.app.providers.retry import RetryExecutor, RetryPolicy
from tendergate.app.services.circuit_breaker import CircuitBreaker, CircuitState
from tendergate.app.services.pipeline import ProtectionPipeline, build_pipeline
from tendergate.app.services.request_queue import RequestQueue
from tendergate.app.services.response_cache import ResponseCache
from tendergate.app.services.token_bucket import TokenBucketLimiter


class ScriptedProvider(BaseProvider):
    """Provider replaying scripted outcomes; the last one repeats."""

    def __init__(self, *outcomes, delay: float = 0.0):
        super().__init__("http://scripted", "key", default_model="scripted-model")
        self.outcomes = list(outcomes) or ["ok"]
        self.delay = delay
        self.requests: list[GenerationRequest] = []

    async def generate_content(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        index = min(len(self.requests) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def health_check(self, timeout: float = 2.0) -> bool:
        return True


def make_pipeline(
    provider,
    clock,
    fake_sleep,
    threshold: int = 5,
    max_attempts: int = 3,
    max_per_day: int = 1000,
    cache: bool = True,
    upstream_timeout: float = 30.0,
) -> ProtectionPipeline:
    breaker = CircuitBreaker(failure_threshold=threshold, reset_timeout=60, clock=clock)
    return ProtectionPipeline(
        provider=provider,
        limiter=TokenBucketLimiter(
            max_tokens=15, refill_rate=0.25, max_per_day=max_per_day,
            clock=clock, sleep=fake_sleep,
        ),
        breaker=breaker,
        queue=RequestQueue(max_queue_size=10, max_concurrent=2),
        retry=RetryExecutor(
            RetryPolicy(max_attempts=max_attempts, base_delay=1.0, jitter=0.0),
            breaker=breaker,
            sleep=fake_sleep,
        ),
        cache=ResponseCache(max_size=10, ttl=300, clock=clock) if cache else None,
        upstream_timeout=upstream_timeout,
    )


class TestGenerate:
    """Happy path and caching."""

    @pytest.mark.asyncio
    async def test_returns_text_and_model(self, clock, fake_sleep):
        pipeline = make_pipeline(ScriptedProvider("hello"), clock, fake_sleep)

        result = await pipeline.generate(GenerationRequest(prompt="hi"))

        assert result.text == "hello"
        assert result.model == "scripted-model"
        assert result.cached is False
        assert result.timestamp

    @pytest.mark.asyncio
    async def test_request_model_overrides_default(self, clock, fake_sleep):
        pipeline = make_pipeline(ScriptedProvider("x"), clock, fake_sleep)

        result = await pipeline.generate(GenerationRequest(prompt="hi", model="gemini-2.5-pro"))

        assert result.model == "gemini-2.5-pro"

    @pytest.mark.asyncio
    async def test_second_identical_request_is_served_from_cache(self, clock, fake_sleep):
        provider = ScriptedProvider("first", "second")
        pipeline = make_pipeline(provider, clock, fake_sleep)

        await pipeline.generate(GenerationRequest(prompt="same"))
        result = await pipeline.generate(GenerationRequest(prompt="same"))

        assert result.text == "first"
        assert result.cached is True
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_tool_requests_bypass_cache(self, clock, fake_sleep):
        provider = ScriptedProvider("first", "second")
        pipeline = make_pipeline(provider, clock, fake_sleep)
        tools = [{"googleSearch": {}}]

        await pipeline.generate(GenerationRequest(prompt="same", tools=tools))
        result = await pipeline.generate(GenerationRequest(prompt="same", tools=tools))

        assert result.text == "second"
        assert len(provider.requests) == 2

    @pytest.mark.asyncio
    async def test_use_cache_false_skips_lookup_and_store(self, clock, fake_sleep):
        provider = ScriptedProvider("a", "b")
        pipeline = make_pipeline(provider, clock, fake_sleep)

        await pipeline.generate(GenerationRequest(prompt="p"), use_cache=False)
        result = await pipeline.generate(GenerationRequest(prompt="p"))

        assert result.text == "b"
        assert result.cached is False

    @pytest.mark.asyncio
    async def test_clear_cache(self, clock, fake_sleep):
        provider = ScriptedProvider("a", "b")
        pipeline = make_pipeline(provider, clock, fake_sleep)
        await pipeline.generate(GenerationRequest(prompt="p"))

        pipeline.clear_cache()
        result = await pipeline.generate(GenerationRequest(prompt="p"))

        assert result.text == "b"


class TestFailures:
    """Retries, circuit breaking and admission failures."""

    @pytest.mark.asyncio
    async def test_throttles_are_retried_then_succeed(self, clock, fake_sleep):
        provider = ScriptedProvider(UpstreamThrottled("429"), UpstreamThrottled("429"), "ok")
        pipeline = make_pipeline(provider, clock, fake_sleep)

        result = await pipeline.generate(GenerationRequest(prompt="p"))

        assert result.text == "ok"
        assert fake_sleep.total >= 3.0
        assert pipeline.breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_failing_upstream_opens_circuit_then_fails_fast(self, clock, fake_sleep):
        provider = ScriptedProvider(UpstreamUnknown("down"))
        pipeline = make_pipeline(provider, clock, fake_sleep, threshold=2, max_attempts=2)

        for _ in range(2):
            with pytest.raises(UpstreamUnknown):
                await pipeline.generate(GenerationRequest(prompt="p"))
        assert pipeline.breaker.state is CircuitState.OPEN
        calls_before = len(provider.requests)

        with pytest.raises(CircuitOpen) as exc_info:
            await pipeline.generate(GenerationRequest(prompt="p"))

        assert exc_info.value.status_code == 503
        assert exc_info.value.retry_after > 0
        assert len(provider.requests) == calls_before

    @pytest.mark.asyncio
    async def test_circuit_recovers_after_cooldown(self, clock, fake_sleep):
        provider = ScriptedProvider(UpstreamUnknown("down"), "back")
        pipeline = make_pipeline(provider, clock, fake_sleep, threshold=1, max_attempts=1)
        with pytest.raises(UpstreamUnknown):
            await pipeline.generate(GenerationRequest(prompt="p"))

        clock.advance(60)
        result = await pipeline.generate(GenerationRequest(prompt="p"))

        assert result.text == "back"
        assert pipeline.breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cached_response_served_while_breaker_closed_only(self, clock, fake_sleep):
        provider = ScriptedProvider("cached", UpstreamUnknown("down"))
        pipeline = make_pipeline(provider, clock, fake_sleep, threshold=1, max_attempts=1)
        await pipeline.generate(GenerationRequest(prompt="p"))
        with pytest.raises(UpstreamUnknown):
            await pipeline.generate(GenerationRequest(prompt="other"))

        with pytest.raises(CircuitOpen):
            await pipeline.generate(GenerationRequest(prompt="p"))

    @pytest.mark.asyncio
    async def test_slow_attempt_times_out(self, clock, fake_sleep):
        provider = ScriptedProvider("late", delay=0.5)
        pipeline = make_pipeline(provider, clock, fake_sleep, max_attempts=1, upstream_timeout=0.01)

        with pytest.raises(UpstreamTimeout):
            await pipeline.generate(GenerationRequest(prompt="p"))

    @pytest.mark.asyncio
    async def test_daily_limit_is_not_an_upstream_failure(self, clock, fake_sleep):
        provider = ScriptedProvider("ok")
        pipeline = make_pipeline(provider, clock, fake_sleep, max_per_day=1, cache=False)
        await pipeline.generate(GenerationRequest(prompt="p"))

        with pytest.raises(DailyLimitExceeded):
            await pipeline.generate(GenerationRequest(prompt="p"))

        assert len(provider.requests) == 1
        assert pipeline.breaker.consecutive_failures == 0


class TestStatusAndFactory:
    """Status projection and construction from settings."""

    @pytest.mark.asyncio
    async def test_get_status_shape(self, clock, fake_sleep):
        pipeline = make_pipeline(ScriptedProvider("ok"), clock, fake_sleep)
        await pipeline.generate(GenerationRequest(prompt="p"))

        status = pipeline.get_status()

        assert status["rate_limit"]["available_tokens"] == 14
        assert status["rate_limit"]["daily_remaining"] == 999
        assert status["circuit"]["state"] == "CLOSED"
        assert status["cache"]["size"] == 1
        assert status["queue"]["total"] == 1

    def test_build_pipeline_from_settings(self, clock):
        settings = Settings(
            max_requests_per_minute=30,
            max_requests_per_day=200,
            failure_threshold=4,
            max_concurrent=5,
            max_retries=2,
            cache_enabled=False,
        )

        pipeline = build_pipeline(settings, ScriptedProvider("ok"), clock=clock)

        assert pipeline.limiter.max_tokens == 30
        assert pipeline.limiter.refill_rate == pytest.approx(0.5)
        assert pipeline.limiter.max_per_day == 200
        assert pipeline.breaker.failure_threshold == 4
        assert pipeline.queue.max_concurrent == 5
        assert pipeline.retry.policy.max_attempts == 2
        assert pipeline.retry.breaker is pipeline.breaker
        assert pipeline.cache is None
        assert pipeline.get_status()["cache"] is None
