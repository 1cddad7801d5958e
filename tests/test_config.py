"""
Tests for settings loading and database selection.
"""

import pytest
from pydantic import ValidationError

from devicepulse.config import Settings
from devicepulse.db import create_database
from devicepulse.db.binding import DEVICE
from devicepulse.db.memory import InMemoryDatabase


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.traffic_mode == "low"
        assert s.device_count == 50
        assert s.join_timeout_seconds == 30.0
        assert s.join_timeout_policy == "discard"
        assert s.deputy_concurrency == 1
        assert s.alert_cooldown_minutes == 15
        assert s.uses_memory_database

    def test_environment_aliases(self, monkeypatch):
        monkeypatch.setenv("TRAFFIC_MODE", "high")
        monkeypatch.setenv("DEVICE_COUNT", "12")
        monkeypatch.setenv("JOIN_TIMEOUT_POLICY", "partial")
        s = Settings(_env_file=None)
        assert s.traffic_mode == "high"
        assert s.device_count == 12
        assert s.join_timeout_policy == "partial"

    @pytest.mark.parametrize("value", ["", "none"])
    def test_blank_join_timeout_disables_it(self, monkeypatch, value):
        monkeypatch.setenv("JOIN_TIMEOUT_SECONDS", value)
        assert Settings(_env_file=None).join_timeout_seconds is None

    def test_fractional_tick_jitter_is_rejected(self, monkeypatch):
        monkeypatch.setenv("TICK_JITTER_SECONDS", "0.5")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_whole_second_tick_jitter(self, monkeypatch):
        monkeypatch.setenv("TICK_JITTER_SECONDS", "3")
        assert Settings(_env_file=None).tick_jitter_seconds == 3

    def test_invalid_traffic_mode(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, traffic_mode="medium")

    @pytest.mark.parametrize("url,expected", [
        ("postgresql://u:p@db/iot", "postgresql+asyncpg://u:p@db/iot"),
        ("sqlite:///./iot.db", "sqlite+aiosqlite:///./iot.db"),
        ("sqlite+aiosqlite:///./iot.db", "sqlite+aiosqlite:///./iot.db"),
    ])
    def test_async_database_url(self, url, expected):
        s = Settings(_env_file=None, database_url=url)
        assert s.async_database_url == expected
        assert not s.uses_memory_database


class TestCreateDatabase:
    @pytest.mark.asyncio
    async def test_memory_backend_is_seeded(self, settings):
        db = await create_database(settings)
        assert isinstance(db, InMemoryDatabase)
        assert len(await db.query(DEVICE)) == settings.device_count
