"""
Traffic Simulator — drives the system with mock device events.

Jobs:
1. Tick (every TICK_INTERVAL_SECONDS ± jitter) — emits `tick.started` on the
   runner bus, occasionally followed by a burst of extra ticks

Each tick makes the runner generate one mock event through TelemetryGenerator.
Traffic mode changes the anomaly bias and how often health checks fire.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from devicepulse.signals.models import TICK_STARTED

logger = structlog.get_logger(__name__)

ANOMALY_BIAS = {"low": 0.05, "high": 0.2}
HEALTH_CHECK_PROBABILITY = {"low": 0.3, "high": 0.7}
DUAL_ANOMALY_PROBABILITY = 0.02
MAINTENANCE_PROBABILITY = 0.5
ESCALATION_PROBABILITY = 0.1


@dataclass
class MockEvent:
    """One simulated device event and the follow-up flows it triggers."""

    device_id: str
    readings: dict[str, float]
    timestamp: datetime
    anomaly_flag: bool = False
    anomaly_reason: Optional[str] = None
    health_check: bool = False
    maintenance: bool = False
    escalation: bool = False

    def telemetry_payload(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "readings": dict(self.readings),
            "timestamp": self.timestamp.isoformat(),
            "anomaly_flag": self.anomaly_flag,
            "anomaly_reason": self.anomaly_reason,
        }


@dataclass
class TelemetryGenerator:
    """Random readings with injected out-of-range spikes."""

    traffic_mode: str = "low"
    device_count: int = 50
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def generate(self) -> MockEvent:
        rng = self.rng
        bias = ANOMALY_BIAS[self.traffic_mode]
        device_id = f"device-{rng.randrange(self.device_count) + 1}"

        base_temp = 20 + rng.random() * 60
        base_humidity = 30 + rng.random() * 40
        battery = 50 + rng.random() * 50

        temperature = base_temp
        humidity = base_humidity
        anomaly_flag = False
        reason = None

        # Overheat > 80°C or freeze < 10°C
        if rng.random() < bias:
            temperature = base_temp + 25 if rng.random() < 0.5 else base_temp - 15
            anomaly_flag = temperature > 80 or temperature < 10
            if anomaly_flag:
                reason = f"Temperature out of range: {temperature:.1f}°C"

        # Condensation > 90% or dry < 20%
        if not anomaly_flag and rng.random() < bias:
            humidity = base_humidity + 65 if rng.random() < 0.5 else base_humidity - 15
            anomaly_flag = humidity > 90 or humidity < 20
            if anomaly_flag:
                reason = f"Humidity out of range: {humidity:.1f}%"

        if rng.random() < DUAL_ANOMALY_PROBABILITY:
            temperature = 85.0 if rng.random() < 0.5 else 5.0
            humidity = 95.0 if rng.random() < 0.5 else 15.0
            anomaly_flag = True
            reason = f"Dual anomaly: Temp {temperature:.0f}°C, Humidity {humidity:.0f}%"

        return MockEvent(
            device_id=device_id,
            readings={
                "temperature": round(temperature, 2),
                "humidity": round(humidity, 2),
                "battery": round(battery, 2),
            },
            timestamp=self.clock(),
            anomaly_flag=anomaly_flag,
            anomaly_reason=reason,
            health_check=rng.random() < HEALTH_CHECK_PROBABILITY[self.traffic_mode],
            maintenance=anomaly_flag and rng.random() < MAINTENANCE_PROBABILITY,
            escalation=(
                anomaly_flag
                and self.traffic_mode == "high"
                and rng.random() < ESCALATION_PROBABILITY
            ),
        )


class TrafficSimulator:
    """
    Owned scheduler emitting `tick.started` on a runner bus.

    Started and stopped explicitly by the hosting process.
    """

    def __init__(
        self,
        emit: Callable[[str, dict], Any],
        interval_seconds: float = 5.0,
        jitter_seconds: int = 0,
        burst_probability: float = 0.1,
        burst_max_ticks: int = 100,
        rng: Optional[random.Random] = None,
    ):
        self._emit = emit
        self.interval_seconds = interval_seconds
        if jitter_seconds != int(jitter_seconds) or jitter_seconds < 0:
            raise ValueError(f"jitter_seconds must be a whole number of seconds, got {jitter_seconds}")
        self.jitter_seconds = int(jitter_seconds)
        self.burst_probability = burst_probability
        self.burst_max_ticks = burst_max_ticks
        self._rng = rng or random.Random()
        self.scheduler = AsyncIOScheduler()
        self.ticks_emitted = 0

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Register the tick job and start the scheduler."""
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(
                seconds=self.interval_seconds,
                jitter=self.jitter_seconds or None,
            ),
            id="traffic_tick",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "traffic_simulator_started",
            interval_seconds=self.interval_seconds,
            jitter_seconds=self.jitter_seconds,
        )

    def stop(self) -> None:
        """Stop the scheduler; pending ticks are dropped."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("traffic_simulator_stopped", ticks_emitted=self.ticks_emitted)

    async def tick(self) -> int:
        """Emit one tick, plus a burst with `burst_probability`."""
        count = 1
        if self.burst_max_ticks and self._rng.random() < self.burst_probability:
            count += int(self._rng.random() * self.burst_max_ticks)
            logger.info("traffic_burst", extra_ticks=count - 1)

        for _ in range(count):
            self._emit(TICK_STARTED, {})
        self.ticks_emitted += count
        return count
