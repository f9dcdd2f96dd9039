"""
Pytest configuration and shared fixtures for testing.
Provides settings overrides, an in-memory store, a controllable clock,
recording connections and a fully wired core.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

# Set testing environment before importing the package
os.environ["ENVIRONMENT"] = "testing"
os.environ["STORE_BACKEND"] = "in_memory"
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from handoff.config import Settings
from handoff.core import create_core
from handoff.realtime.router import Connection, EventRouter
from handoff.services.ai_collaborator import MockAICollaborator
from handoff.store import InMemoryCoordinationStore


# ===========================
# Settings Fixtures
# ===========================

@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: in-memory store, no telemetry, fixed instance id."""
    return Settings(
        _env_file=None,
        environment="testing",
        store_backend="in_memory",
        instance_id="test-instance",
        enable_telemetry=False,
        feedback_base_url="https://support.example.com/feedback"
    )


@pytest.fixture
def settings_override(test_settings: Settings, monkeypatch):
    """
    Override settings for individual tests.
    Usage: settings_override({"auto_assign": False})
    """
    def _override(overrides: Dict[str, Any]) -> Settings:
        for key, value in overrides.items():
            monkeypatch.setattr(test_settings, key, value)
        return test_settings

    return _override


# ===========================
# Clock Fixtures
# ===========================

class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


class FakeMonotonic:
    """Manually advanced seconds counter for store expiry and rate windows."""

    def __init__(self, start: float = 1_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> float:
        self.value += seconds
        return self.value


@pytest.fixture
def ticker() -> FakeMonotonic:
    return FakeMonotonic()


# ===========================
# Store Fixtures
# ===========================

@pytest.fixture
def store() -> InMemoryCoordinationStore:
    """Fresh in-memory coordination store."""
    return InMemoryCoordinationStore()


@pytest.fixture
def ticking_store(ticker) -> InMemoryCoordinationStore:
    """In-memory store whose expiry follows the ``ticker`` fixture."""
    return InMemoryCoordinationStore(clock=ticker)


# ===========================
# Realtime Fixtures
# ===========================

class RecordingConnection(Connection):
    """Connection that keeps every message it was sent."""

    def __init__(self, connection_id: str, fail: bool = False):
        super().__init__(connection_id)
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail

    async def send(self, message: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("peer went away")
        self.sent.append(message)

    def events(self, event_type: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message["type"] == event_type]

    def types(self) -> List[str]:
        return [message["type"] for message in self.sent]


@pytest.fixture
def make_connection():
    """Factory for recording connections."""
    def _make(connection_id: str, fail: bool = False) -> RecordingConnection:
        return RecordingConnection(connection_id, fail=fail)

    return _make


@pytest.fixture
def router() -> EventRouter:
    return EventRouter(instance_id="test-instance")


# ===========================
# Core Fixtures
# ===========================

@pytest.fixture
def mock_ai() -> MockAICollaborator:
    return MockAICollaborator(confidence=0.9, reply_prefix="Happy to help.")


@pytest.fixture
def core(test_settings, store, mock_ai):
    """Fully wired core without background tasks."""
    return create_core(test_settings, store=store, ai=mock_ai)


# ===========================
# Pytest Configuration
# ===========================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "requires_redis: marks tests requiring Redis connection"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
