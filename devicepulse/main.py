"""
DevicePulse Entry Point.

Usage:
    python -m devicepulse.main
    devicepulse

Hosts all five services in one process, drives them with the traffic
simulator and shuts down gracefully on SIGINT/SIGTERM.
"""

import asyncio
import signal

import structlog

from devicepulse.cluster import Cluster
from devicepulse.config import get_settings
from devicepulse.db import create_database
from devicepulse.logging_config import configure_logging

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the cluster until a shutdown signal arrives."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger.info(
        "devicepulse_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    db = await create_database(settings)
    cluster = Cluster(settings, db)
    await cluster.start(simulate=True)

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("devicepulse_running", msg="Simulating traffic... Ctrl+C to stop.")

    # Block until shutdown signal
    await stop_event.wait()

    # Cleanup
    cluster.simulator.stop()
    try:
        await asyncio.wait_for(cluster.drain(), settings.graceful_shutdown_seconds)
    except asyncio.TimeoutError:
        logger.warning("drain_timed_out", timeout_seconds=settings.graceful_shutdown_seconds)
    await cluster.stop()
    await db.close()
    logger.info("devicepulse_shutdown_complete")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
