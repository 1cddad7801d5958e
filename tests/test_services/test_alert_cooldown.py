"""
Tests for alert cooldown and severity escalation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from devicepulse.services.alert_cooldown import AlertCooldown


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def cooldown(clock) -> AlertCooldown:
    return AlertCooldown(cooldown_minutes=15, clock=clock)


class TestCooldown:
    def test_first_alert_passes(self, cooldown):
        assert cooldown.should_suppress("device-1", "anomaly", "medium") == (False, "")

    def test_repeat_within_window_suppressed(self, cooldown, clock):
        cooldown.record_fired("device-1", "anomaly", "medium")
        clock.advance(5)
        suppressed, reason = cooldown.should_suppress("device-1", "anomaly", "medium")
        assert suppressed
        assert "10m remaining" in reason

    def test_window_expires(self, cooldown, clock):
        cooldown.record_fired("device-1", "anomaly", "medium")
        clock.advance(15)
        assert cooldown.should_suppress("device-1", "anomaly", "medium")[0] is False

    def test_keyed_by_device_and_type(self, cooldown):
        cooldown.record_fired("device-1", "anomaly", "medium")
        assert not cooldown.should_suppress("device-2", "anomaly", "medium")[0]
        assert not cooldown.should_suppress("device-1", "prediction", "medium")[0]


class TestEscalation:
    def test_higher_severity_bypasses(self, cooldown):
        cooldown.record_fired("device-1", "anomaly", "medium")
        assert not cooldown.should_suppress("device-1", "anomaly", "high")[0]

    def test_lower_severity_suppressed(self, cooldown):
        cooldown.record_fired("device-1", "anomaly", "high")
        assert cooldown.should_suppress("device-1", "anomaly", "low")[0]

    def test_reset_clears_state(self, cooldown):
        cooldown.record_fired("device-1", "anomaly", "high")
        cooldown.reset()
        assert not cooldown.should_suppress("device-1", "anomaly", "high")[0]
