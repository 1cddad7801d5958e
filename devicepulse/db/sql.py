"""
SQL database binding over the async SQLAlchemy ORM.

Records cross the binding as plain dicts; keys that are not columns of the
target table are dropped on insert.
"""

from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.inspection import inspect as sa_inspect

from devicepulse.db.binding import (
    TELEMETRY,
    Record,
    Sort,
    check_sort,
    check_table,
    default_devices,
    with_defaults,
)
from devicepulse.db.engine import create_engine, create_session_factory, create_tables
from devicepulse.db.models import MODELS, Device

logger = structlog.get_logger(__name__)


class SqlDatabase:
    def __init__(self, url: str, echo: bool = False, engine: Optional[AsyncEngine] = None):
        self.engine = engine or create_engine(url, echo=echo)
        self._session_factory = create_session_factory(self.engine)

    async def init(self, device_count: int = 0) -> None:
        """Create tables and seed the device fleet if it is empty."""
        await create_tables(self.engine)
        if device_count <= 0:
            return
        async with self._session_factory() as session:
            existing = await session.scalar(select(func.count()).select_from(Device))
            if existing:
                return
            session.add_all(Device(**d) for d in default_devices(device_count))
            await session.commit()
        logger.info("devices_seeded", count=device_count)

    async def query(
        self,
        table: str,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> list[Record]:
        check_table(table)
        check_sort(sort)
        model = MODELS[table]
        columns = _columns(model)

        stmt = select(model)
        for field, value in (filter or {}).items():
            if field not in columns:
                raise ValueError(f"Table '{table}' has no column '{field}'")
            stmt = stmt.where(getattr(model, field) == value)
        for field, direction in (sort or {}).items():
            if field not in columns:
                raise ValueError(f"Table '{table}' has no column '{field}'")
            column = getattr(model, field)
            stmt = stmt.order_by(column.desc() if direction == "desc" else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_to_dict(row, columns) for row in result.all()]

    async def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        check_table(table)
        model = MODELS[table]
        columns = _columns(model)
        row = with_defaults(table, record)

        dropped = sorted(set(row) - columns)
        if dropped:
            logger.debug("insert_fields_dropped", table=table, fields=dropped)

        instance = model(**{k: v for k, v in row.items() if k in columns})
        async with self._session_factory() as session:
            try:
                session.add(instance)
                if table == TELEMETRY:
                    device = await session.get(Device, row.get("device_id"))
                    if device is not None:
                        device.last_seen = row["timestamp"]
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            persisted = _to_dict(instance, columns)

        logger.debug("record_inserted", table=table, uuid=persisted.get("uuid"))
        return persisted

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("database_closed")


def _columns(model) -> set[str]:
    return {attr.key for attr in sa_inspect(model).column_attrs}


def _to_dict(instance, columns: set[str]) -> Record:
    return {name: getattr(instance, name) for name in sorted(columns)}
