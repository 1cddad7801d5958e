"""
Cluster — the five DevicePulse services hosted in one asyncio process.

Owns the ServiceDirectory, the shared database binding and weather client,
and the start/drain/stop lifecycle. Nothing here is a module-level singleton:
tests build as many clusters as they like.
"""

import random
from datetime import datetime
from typing import Callable, Optional

import structlog

from devicepulse.analyzers.anomaly import AnomalyScorer
from devicepulse.config import Settings
from devicepulse.db.binding import DatabaseBinding
from devicepulse.engine.prediction import PredictionEngine
from devicepulse.orchestration.join import JoinCoordinator
from devicepulse.orchestration.service import Service, ServiceDirectory
from devicepulse.pipelines import (
    alert_service,
    anomaly_detector,
    predictor,
    runner,
    telemetry_collector,
)
from devicepulse.pipelines.names import (
    ALERT_SERVICE,
    ANOMALY_DETECTOR,
    PREDICTOR,
    RUNNER,
    TELEMETRY_COLLECTOR,
)
from devicepulse.pipelines.states import MONITORING_CYCLE
from devicepulse.services.alert_cooldown import AlertCooldown
from devicepulse.services.traffic import TelemetryGenerator, TrafficSimulator
from devicepulse.services.weather_client import DeviceLocator, WeatherClient
from devicepulse.signals.models import TICK_STARTED

logger = structlog.get_logger(__name__)


class Cluster:
    """Builds and runs the runner, collector, detector, predictor and alert services."""

    def __init__(
        self,
        settings: Settings,
        db: DatabaseBinding,
        weather: Optional[WeatherClient] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.db = db
        self.rng = rng or random.Random()
        self.weather = weather or WeatherClient(
            api_key=settings.weather_api_key,
            base_url=settings.weather_base_url,
            timeout=settings.weather_timeout_seconds,
        )
        self.directory = ServiceDirectory()

        self.generator = TelemetryGenerator(
            traffic_mode=settings.traffic_mode,
            device_count=settings.device_count,
            rng=self.rng,
        )
        if clock is not None:
            self.generator.clock = clock
        self.scorer = AnomalyScorer()
        self.engine = PredictionEngine(rng=self.rng, clock=clock)
        self.cooldown = AlertCooldown(settings.alert_cooldown_minutes, clock=clock)
        self.locator = DeviceLocator(settings.fleet_latitude, settings.fleet_longitude)

        self.runner = runner.install(self._service(RUNNER), db, self.generator)
        self.telemetry_collector = telemetry_collector.install(
            self._service(TELEMETRY_COLLECTOR), db, settings.deputy_concurrency,
        )
        self.anomaly_detector = anomaly_detector.install(
            self._service(ANOMALY_DETECTOR), db, self.scorer, settings.anomaly_window,
        )
        self.predictor = predictor.install(
            self._service(PREDICTOR),
            db,
            self.engine,
            self.weather,
            self.locator,
            settings.prediction_history_limit,
        )
        self.alert_service = alert_service.install(self._service(ALERT_SERVICE), db, self.cooldown)

        self.simulator = TrafficSimulator(
            emit=lambda name, payload: self.runner.emit(name, payload),
            interval_seconds=settings.tick_interval_seconds,
            jitter_seconds=settings.tick_jitter_seconds,
            burst_probability=settings.burst_probability,
            burst_max_ticks=settings.burst_max_ticks,
            rng=self.rng,
        )

    def _service(self, name: str) -> Service:
        return Service(
            name,
            self.directory,
            joins=JoinCoordinator(
                timeout_seconds=self.settings.join_timeout_seconds,
                timeout_policy=self.settings.join_timeout_policy,
            ),
            state_machine=MONITORING_CYCLE,
            history_size=self.settings.run_history_size,
            signal_history_size=self.settings.signal_history_size,
        )

    def service(self, name: str) -> Service:
        return self.directory[name]

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self, simulate: bool = False) -> None:
        """Start every bus; optionally start the traffic simulator."""
        await self.directory.start_all()
        if simulate:
            self.simulator.start()
        logger.info(
            "cluster_started",
            services=self.directory.names,
            traffic_mode=self.settings.traffic_mode,
            device_count=self.settings.device_count,
            simulate=simulate,
        )

    def tick(self) -> None:
        """Emit one `tick.started` on the runner bus."""
        self.runner.emit(TICK_STARTED, {})

    async def drain(self) -> None:
        await self.directory.drain()

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop the simulator, then every bus."""
        if self.simulator.running:
            self.simulator.stop()
        grace = self.settings.graceful_shutdown_seconds if grace_seconds is None else grace_seconds
        await self.directory.stop_all(grace)
        logger.info("cluster_stopped")
