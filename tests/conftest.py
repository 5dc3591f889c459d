"""
Test configuration for the MedVerse cache coordinator test suite.
"""

from __future__ import annotations

import os

import pytest

from medverse_common.cache import (
    CacheManager,
    InMemoryQueryCache,
    InMemoryStorage,
    get_testing_config,
)
from medverse_common.notify import RecordingNotifier
from tests.fixtures.cache_fakes import FakeClock, RecordingReloader


# Test markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session", autouse=True)
def test_environment_setup():
    """Set up test environment."""
    original_env = os.environ.copy()
    os.environ["LOG_LEVEL"] = "DEBUG"

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reloader() -> RecordingReloader:
    return RecordingReloader()


@pytest.fixture
def local_storage() -> InMemoryStorage:
    return InMemoryStorage({"sb-access-token": "token", "theme": "dark"})


@pytest.fixture
def session_storage() -> InMemoryStorage:
    return InMemoryStorage({"cache-manager:scratch": "1", "draft-prescription": "{}"})


@pytest.fixture
def query_cache(clock) -> InMemoryQueryCache:
    return InMemoryQueryCache(stale_after_ms=60000, clock=clock)


@pytest.fixture
def manager(clock, notifier, reloader, local_storage, session_storage, query_cache) -> CacheManager:
    return CacheManager(
        get_testing_config(),
        query_cache=query_cache,
        local_storage=local_storage,
        session_storage=session_storage,
        notifier=notifier,
        reloader=reloader,
        clock=clock,
    )
