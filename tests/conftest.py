"""Shared pytest fixtures for diagram-engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from diagram_engine.config import ProviderConfig
from diagram_engine.usage import MemoryStore, UsageMonitor


class FakeClock:
    """Settable wall clock for the usage monitor."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """A clock fixed at 10:05 on a weekday morning."""
    return FakeClock(datetime(2025, 3, 12, 10, 5, 0))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def monitor(store: MemoryStore, clock: FakeClock) -> UsageMonitor:
    return UsageMonitor(store=store, clock=clock)


@pytest.fixture
def openai_config() -> ProviderConfig:
    return ProviderConfig(
        type="openai",
        base_url="https://api.example.com/v1",
        api_key="sk-test",
        model="gpt-4o",
    )


@pytest.fixture
def anthropic_config() -> ProviderConfig:
    return ProviderConfig(
        type="anthropic",
        base_url="https://api.anthropic.com/v1",
        api_key="sk-ant-test",
        model="claude-sonnet-4-20250514",
    )


@pytest.fixture
def builtin_config() -> ProviderConfig:
    return ProviderConfig(
        type="builtin",
        base_url="https://glm.example.com",
        api_key="glm-test",
        model="glm-4.6",
        name="Built-in",
    )
