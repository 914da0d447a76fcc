"""
Pytest configuration for the email-os suite

Provides fixtures shared across all test files. Test doubles live in
tests/fixtures/fakes.py.
"""

from __future__ import annotations

import pytest

from emailos.bus import EventBus
from emailos.llm.provider import LLMError
from emailos.observability import telemetry
from emailos.storage.sink import MemoryStore
from tests.fixtures.fakes import FakeClock, FakeProvider


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.reset()
    yield
    telemetry.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus(clock) -> EventBus:
    return EventBus(clock=clock)


@pytest.fixture
def events(bus):
    """Every event published on ``bus``, in order."""
    seen = []
    bus.subscribe("*", seen.append)
    return seen


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def failing_provider() -> FakeProvider:
    return FakeProvider(error=LLMError("boom", provider="fake/test"))
