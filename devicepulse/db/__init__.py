"""
DevicePulse persistence.

Components:
- binding: the query/insert contract and table names
- memory: in-memory binding (default)
- sql: SQLAlchemy async binding for SQLite and PostgreSQL
- tasks: query/insert task factories for routines
"""

import structlog

from devicepulse.config import Settings
from devicepulse.db.binding import ALERT, DEVICE, HEALTH_METRIC, TELEMETRY, DatabaseBinding
from devicepulse.db.memory import InMemoryDatabase

logger = structlog.get_logger(__name__)


async def create_database(settings: Settings) -> DatabaseBinding:
    """Build the binding selected by DATABASE_URL and seed the device fleet."""
    if settings.uses_memory_database:
        logger.info("database_selected", backend="memory")
        return InMemoryDatabase(device_count=settings.device_count)

    from devicepulse.db.sql import SqlDatabase

    db = SqlDatabase(settings.async_database_url)
    await db.init(device_count=settings.device_count)
    logger.info("database_selected", backend="sql")
    return db


__all__ = [
    "ALERT",
    "DEVICE",
    "HEALTH_METRIC",
    "TELEMETRY",
    "DatabaseBinding",
    "InMemoryDatabase",
    "create_database",
]
