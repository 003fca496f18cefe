"""Shared pytest configuration and fixtures for orchestrator tests."""

import os
from pathlib import Path

import pytest

from src.core.config import OrchestratorSettings, RoutingTable
from src.core.config.routing import DEFAULT_ROUTING_TABLE
from src.core.resilience import CircuitBreakerConfig, RetryConfig, RetryExecutor

# Import HTTP mocking fixtures from fixtures module
pytest_plugins = ["tests.fixtures.mock_http", "tests.fixtures.fake_providers"]

# Variables that would leak a developer's local setup into the tests
_ISOLATED_PREFIXES = ("AIORCH_",)
_ISOLATED_NAMES = ("LOG_LEVEL", "OPENAI_API_KEY", "GEMINI_API_KEY")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (fast, no external deps)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires real API keys)"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers to tests based on their location."""
    for item in items:
        if "tests/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Clear orchestrator and provider variables for every test.

    Unit tests never talk to real providers; RESPX mocks all HTTP calls.
    """
    for key in list(os.environ):
        if key.startswith(_ISOLATED_PREFIXES) or key in _ISOLATED_NAMES:
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def test_settings(cache_dir) -> OrchestratorSettings:
    """Settings pointing every cache at a temporary directory."""
    return OrchestratorSettings(
        config_file=None,
        cache_dir=cache_dir,
        preferences_file=cache_dir / "preferences.json",
        log_level="DEBUG",
        cache_max_size=100,
        cache_ttl_minutes=30,
        persistent_cache_days=7,
        request_timeout=5.0,
        init_wait_attempts=5,
        init_wait_interval_ms=10,
        retry_max_attempts=2,
        retry_initial_delay_ms=1,
        retry_max_delay_ms=5,
        circuit_failure_threshold=5,
        circuit_recovery_timeout_ms=60000,
    )


@pytest.fixture
def fast_retry_executor() -> RetryExecutor:
    """Retry executor with millisecond delays and no jitter."""
    return RetryExecutor(
        RetryConfig(max_attempts=2, initial_delay_ms=1, max_delay_ms=5, jitter_factor=0.0),
        CircuitBreakerConfig(failure_threshold=5, timeout_ms=5000),
    )


@pytest.fixture
def default_routing_table() -> RoutingTable:
    return RoutingTable.from_dict(DEFAULT_ROUTING_TABLE)
