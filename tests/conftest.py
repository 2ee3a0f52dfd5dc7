"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sms_delivery.core.interfaces.store import InMemoryStore  # noqa: E402
from tests.test_fixtures import ManualClock, RecordingSleep, SenderTestFactory  # noqa: E402


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock():
    """Manual clock shared by the store and the component under test."""
    return ManualClock()


@pytest.fixture
def store(clock):
    """In-memory shared store driven by the manual clock."""
    return InMemoryStore(clock=clock)


@pytest.fixture
def sender():
    """Sender that always succeeds."""
    return SenderTestFactory.succeeding()


@pytest.fixture
def no_sleep():
    """Backoff sleep that does not wait."""
    return RecordingSleep()


@pytest.fixture
def mock_metrics():
    """MetricsCollector stand-in recording calls."""
    return MagicMock()


@pytest.fixture
def mock_redis():
    """
    AsyncMock redis.asyncio client.

    Default behavior: empty keyspace, successful writes. Registered Lua
    scripts are AsyncMocks returning 1, reachable via `mock.scripts[source]`.
    """
    mock = AsyncMock()
    mock.get.return_value = None
    mock.set.return_value = True
    mock.delete.return_value = 1
    mock.exists.return_value = 0
    mock.incr.return_value = 1
    mock.ping.return_value = True

    scripts = {}
    mock.scripts = scripts
    mock.register_script = MagicMock(
        side_effect=lambda source: scripts.setdefault(source, AsyncMock(return_value=1))
    )
    return mock
