"""
Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests.
Scripted fakes live in fakes.py.
"""

import logging

import pytest

from fakes import FakeModelClient, FakeQueryStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires a model server and PostgreSQL)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may require external services)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 1 second)")
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(
        reason="Integration tests disabled (use --run-integration to enable)."
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture all log levels for every test."""
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Environment and Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path):
    """
    Keep tests away from the developer's .env and ~/.homechat.

    The settings cache is cleared before and after each test.
    """
    from homechat import settings_store
    from homechat.config import clear_settings_cache

    monkeypatch.setenv("HOMECHAT_ENV_SOURCE", "process")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SYSTEM_DATABASE_URL", raising=False)
    monkeypatch.setattr(settings_store, "CONFIG_DIR", tmp_path / ".homechat")
    monkeypatch.setattr(settings_store, "CONFIG_PATH", tmp_path / ".homechat" / "config.json")

    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Fakes
# ============================================================================


@pytest.fixture
def fake_client() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def fake_store() -> FakeQueryStore:
    return FakeQueryStore()
