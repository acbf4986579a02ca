"""Shared fixtures: a controllable clock and a sleep that advances it."""

import pytest

from tendergate.app.services.token_bucket import next_local_midnight


class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances the clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def clock() -> FakeClock:
    # One hour past a local midnight, so short tests never cross a day boundary
    return FakeClock(next_local_midnight(1_700_000_000.0) + 3600)


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def make_client(clock: FakeClock):
    """Build a TestClient around a fresh app with the mock provider.

    Keyword arguments override Settings fields; pass ``provider=None`` for
    an app with no upstream configured.
    """
    from fastapi.testclient import TestClient

    from tendergate.app.core.config import Settings
    from tendergate.app.main import create_app
    from tendergate.app.providers.mock import MockProvider

    def factory(provider=..., **overrides) -> TestClient:
        if provider is ...:
            provider = MockProvider(min_delay=0, max_delay=0)
        params = {"gemini_api_key": "", "mock_provider": False}
        params.update(overrides)
        app = create_app(settings=Settings(**params), provider=provider, clock=clock)
        return TestClient(app, raise_server_exceptions=False)

    return factory
