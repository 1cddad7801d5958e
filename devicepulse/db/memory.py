"""
In-memory database binding.

Default binding for local runs and tests. Rows are kept per table in
insertion order; ties on a sort key keep insertion order, newest first
for descending sorts.
"""

import asyncio
import copy
from itertools import count
from typing import Any, Mapping, Optional

import structlog

from devicepulse.db.binding import (
    DEVICE,
    TABLES,
    TELEMETRY,
    Record,
    Sort,
    check_sort,
    check_table,
    default_devices,
    with_defaults,
)

logger = structlog.get_logger(__name__)


class InMemoryDatabase:
    def __init__(self, device_count: int = 0):
        self._tables: dict[str, list[tuple[int, Record]]] = {t: [] for t in TABLES}
        self._seq = count()
        self._lock = asyncio.Lock()
        for device in default_devices(device_count):
            self._tables[DEVICE].append((next(self._seq), device))

    async def query(
        self,
        table: str,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> list[Record]:
        check_table(table)
        check_sort(sort)
        rows = [
            (seq, row) for seq, row in self._tables[table]
            if all(row.get(k) == v for k, v in (filter or {}).items())
        ]

        keys = list((sort or {}).items())
        if keys:
            # Ties follow insertion order in the primary key's direction
            rows.sort(key=lambda item: item[0], reverse=keys[0][1] == "desc")
            for field, direction in reversed(keys):
                rows.sort(
                    key=lambda item, f=field: _sort_key(item[1].get(f)),
                    reverse=direction == "desc",
                )

        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(row) for _, row in rows]

    async def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        check_table(table)
        row = with_defaults(table, copy.deepcopy(dict(record)))
        async with self._lock:
            self._tables[table].append((next(self._seq), row))
            if table == TELEMETRY:
                self._touch_device(row.get("device_id"), row["timestamp"])
        logger.debug("record_inserted", table=table, uuid=row.get("uuid"))
        return copy.deepcopy(row)

    async def close(self) -> None:
        pass

    def row_count(self, table: str) -> int:
        check_table(table)
        return len(self._tables[table])

    def _touch_device(self, device_id: str, seen_at) -> None:
        for _, device in self._tables[DEVICE]:
            if device["name"] == device_id:
                device["last_seen"] = seen_at
                return


def _sort_key(value):
    # None sorts before any value
    return (value is not None, value)
