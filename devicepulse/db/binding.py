"""
Database binding contract shared by the in-memory and SQL implementations.

    query(table, filter, sort=None, limit=None) -> list[dict]
    insert(table, record) -> dict

`filter` is a field → value equality map. `sort` maps field → "asc" | "desc".
`insert` fills a generated `uuid` and a default `timestamp` when missing and
returns the persisted record.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from devicepulse.exceptions import UnknownTableError

DEVICE = "device"
TELEMETRY = "telemetry"
HEALTH_METRIC = "health_metric"
ALERT = "alert"

TABLES = (DEVICE, TELEMETRY, HEALTH_METRIC, ALERT)

Record = dict[str, Any]
Sort = Mapping[str, str]


class DatabaseBinding(Protocol):
    async def query(
        self,
        table: str,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> list[Record]: ...

    async def insert(self, table: str, record: Mapping[str, Any]) -> Record: ...

    async def close(self) -> None: ...


def check_table(table: str) -> None:
    if table not in TABLES:
        raise UnknownTableError(f"Unknown table: {table}")


def check_sort(sort: Optional[Sort]) -> None:
    for field, direction in (sort or {}).items():
        if direction not in ("asc", "desc"):
            raise ValueError(f"Sort direction for '{field}' must be 'asc' or 'desc'")


def with_defaults(table: str, record: Mapping[str, Any]) -> Record:
    """Copy of `record` with generated identifier and timestamp."""
    row = dict(record)
    if table == DEVICE:
        return row
    if not row.get("uuid"):
        row["uuid"] = str(uuid.uuid4())
    if row.get("timestamp") is None:
        row["timestamp"] = datetime.now(timezone.utc)
    if table == ALERT:
        row.setdefault("resolved", False)
    return row


def default_devices(count: int) -> list[Record]:
    """Device fleet `device-1..device-N`."""
    kinds = {1: "temperature-humidity", 2: "battery-monitor", 3: "environmental"}
    return [
        {"name": f"device-{i}", "type": kinds.get(i, "mixed-sensor"), "last_seen": None}
        for i in range(1, count + 1)
    ]
