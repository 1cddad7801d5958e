"""
Alert Cooldown — prevent alert storms.

Strategies:
1. Cooldown: don't raise the same alert type for a device again within N minutes
2. Escalation: a strictly higher severity passes through an active cooldown

State is in-memory and process-local.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2}


class AlertCooldown:
    """Tracks the last alert per (device, alert type)."""

    def __init__(
        self,
        cooldown_minutes: int,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # (device_id, alert_type) → (fired_at, severity)
        self._last_fired: dict[tuple[str, str], tuple[datetime, str]] = {}

    def should_suppress(self, device_id: str, alert_type: str, severity: str) -> tuple[bool, str]:
        """
        Check whether an alert should be suppressed.

        Returns:
            (should_suppress, reason)
        """
        last = self._last_fired.get((device_id, alert_type))
        if last is None:
            return False, ""

        fired_at, last_severity = last
        elapsed = self._clock() - fired_at
        if elapsed >= self.cooldown:
            return False, ""

        if SEVERITY_RANK.get(severity, 0) > SEVERITY_RANK.get(last_severity, 0):
            logger.debug(
                "alert_cooldown_bypassed",
                device_id=device_id,
                alert_type=alert_type,
                severity=severity,
                previous_severity=last_severity,
            )
            return False, ""

        remaining = (self.cooldown - elapsed).total_seconds() / 60.0
        reason = (
            f"Cooldown active: {remaining:.0f}m remaining "
            f"({alert_type} alert for {device_id} fired {elapsed.total_seconds() / 60.0:.0f}m ago)"
        )
        logger.debug(
            "alert_suppressed_cooldown",
            device_id=device_id,
            alert_type=alert_type,
            elapsed_minutes=round(elapsed.total_seconds() / 60.0, 1),
        )
        return True, reason

    def record_fired(self, device_id: str, alert_type: str, severity: str) -> None:
        self._last_fired[(device_id, alert_type)] = (self._clock(), severity)

    def reset(self) -> None:
        self._last_fired.clear()
