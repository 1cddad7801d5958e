"""
Test fixtures for DevicePulse.

Provides:
- Settings isolated from .env files
- A fresh ServiceDirectory per test, stopped on teardown
- In-memory database binding seeded with a small fleet
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from devicepulse.config import Settings
from devicepulse.db.memory import InMemoryDatabase
from devicepulse.orchestration.service import ServiceDirectory

TEST_DEVICE_COUNT = 5


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        traffic_mode="low",
        device_count=TEST_DEVICE_COUNT,
        join_timeout_seconds=2.0,
        join_timeout_policy="discard",
        alert_cooldown_minutes=15,
        weather_api_key="",
        database_url="memory://",
        graceful_shutdown_seconds=1.0,
    )


@pytest.fixture
def memory_db() -> InMemoryDatabase:
    return InMemoryDatabase(device_count=TEST_DEVICE_COUNT)


@pytest_asyncio.fixture
async def directory() -> AsyncGenerator[ServiceDirectory, None]:
    """ServiceDirectory whose buses are stopped after the test."""
    d = ServiceDirectory()
    yield d
    await d.stop_all(grace_seconds=0.5)
