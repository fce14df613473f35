"""Pytest configuration and shared fixtures."""

import pytest

from schema_cache import SchemaCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    """Schema cache with no default TTL driven by the fake clock."""
    return SchemaCache(clock=clock)


@pytest.fixture
def counting_fetcher():
    """Async fetcher returning "data" that records how often it ran."""

    class Fetcher:
        def __init__(self):
            self.calls = 0

        async def __call__(self):
            self.calls += 1
            return "data"

    return Fetcher()
