"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any import that might build settings,
so a developer's local .env file never leaks into the test run.
"""

import os

# Set this before importing bucketgate so config picks the testing env file
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "json")

import pytest

from bucketgate.adapters.store.in_memory import InMemoryBucketStateStore
from bucketgate.core.rate_limit import reset_rate_limiter


class FakeClock:
    """Deterministic clock returning UNIX seconds, advanced by tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryBucketStateStore:
    return InMemoryBucketStateStore(clock=clock)


@pytest.fixture(autouse=True)
def _fresh_limiter_cache():
    reset_rate_limiter()
    yield
    reset_rate_limiter()
