"""
Task factories bound to a database binding.

    query_task(db, "telemetry", into="telemetry_history", sort={"timestamp": "desc"}, limit=20)
    insert_task(db, "health_metric", signal=..., target_services=[...])

A query task reads its equality filter from `ctx["query"]["filter"]` (or a
`filter_from` callable) and stores the rows under `into`. An insert task
persists `ctx[record_key]`, stores the persisted row under `persisted` and
can announce it with a signal carrying the device id and the row (or a
payload built by `payload_from`).
"""

from typing import Any, Callable, Iterable, Mapping, Optional

from devicepulse.db.binding import DatabaseBinding, Sort
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.task import Emitter, Task

FilterBuilder = Callable[[Context], Mapping[str, Any]]
PayloadBuilder = Callable[[dict[str, Any], Context], dict[str, Any]]


def _filter_from_context(ctx: Context) -> Mapping[str, Any]:
    query = ctx.get("query") or {}
    if "filter" in query:
        return query["filter"]
    return {"device_id": ctx["device_id"]}


def _camel(table: str) -> str:
    return "".join(part.capitalize() for part in table.split("_"))


def query_task(
    db: DatabaseBinding,
    table: str,
    *,
    into: str,
    name: Optional[str] = None,
    sort: Optional[Sort] = None,
    limit: Optional[int] = None,
    filter_from: FilterBuilder = _filter_from_context,
    **kwargs,
) -> Task:
    async def handler(ctx: Context, emit: Emitter) -> Context:
        ctx[into] = await db.query(table, filter_from(ctx), sort=sort, limit=limit)
        return ctx

    return Task(
        name or f"Query{_camel(table)}",
        handler,
        f"Queries {table}",
        **kwargs,
    )


def insert_task(
    db: DatabaseBinding,
    table: str,
    *,
    record_key: str = "data",
    name: Optional[str] = None,
    signal: Optional[str] = None,
    target_services: Optional[Iterable[str]] = None,
    payload_from: Optional[PayloadBuilder] = None,
    **kwargs,
) -> Task:
    targets = tuple(target_services) if target_services else None

    async def handler(ctx: Context, emit: Emitter) -> Context:
        persisted = await db.insert(table, ctx[record_key])
        ctx["persisted"] = persisted
        if signal is not None:
            if payload_from is not None:
                payload = payload_from(persisted, ctx)
            else:
                payload = {"device_id": persisted.get("device_id"), table: payload_row(persisted)}
            emit(signal, payload, target_services=targets)
        return ctx

    task = Task(
        name or f"Insert{_camel(table)}",
        handler,
        f"Persists a {table} record",
        **kwargs,
    )
    if signal is not None:
        task.attach_signal(signal)
    return task


def payload_row(row: Mapping[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in row.items():
        out[key] = value.isoformat() if hasattr(value, "isoformat") else value
    return out
