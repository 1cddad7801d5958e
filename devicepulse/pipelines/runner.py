"""
Runner routines — mock device events and the triggers of every other flow.

RunMockScheduler             tick.started                 → mock event, local follow-ups
MockTelemetryIngestion       runner.new_telemetry         → insert telemetry, notify collector
TriggerHealthCheck           health.check                 → telemetry-collector
TriggerPredictiveMaintenance predictor.maintenance_needed → predictor
TriggerAlertEscalation       health.alert_escalation      → alert-service
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from devicepulse.db.binding import TELEMETRY, DatabaseBinding
from devicepulse.db.tasks import insert_task
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.service import Service
from devicepulse.orchestration.task import Emitter, Routine, Task
from devicepulse.pipelines.names import ALERT_SERVICE, PREDICTOR, TELEMETRY_COLLECTOR
from devicepulse.services.traffic import TelemetryGenerator
from devicepulse.signals import models as sig

logger = structlog.get_logger(__name__)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return datetime.now(timezone.utc)


def telemetry_inserted_payload(row: dict[str, Any], ctx: Context) -> dict[str, Any]:
    """Payload of `global.telemetry.inserted`: the stored reading, nested as telemetry."""
    timestamp = row.get("timestamp")
    return {
        "device_id": row["device_id"],
        "telemetry": {
            "uuid": row.get("uuid"),
            "timestamp": timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp,
            "readings": {
                "temperature": row.get("temperature"),
                "humidity": row.get("humidity"),
                "battery": row.get("battery"),
            },
        },
    }


def build_mock_scheduler(generator: TelemetryGenerator) -> Routine:
    def run_mock_scheduler(ctx: Context, emit: Emitter) -> dict:
        event = generator.generate()
        emit(sig.RUNNER_NEW_TELEMETRY, event.telemetry_payload())

        if event.health_check:
            emit(sig.HEALTH_CHECK, {"device_id": event.device_id})
        if event.maintenance:
            emit(sig.MAINTENANCE_NEEDED, {"device_id": event.device_id, "anomaly_flag": True})
        if event.escalation:
            emit(sig.HEALTH_ALERT_ESCALATION, {
                "device_id": event.device_id,
                "severity": "high",
                "reason": event.anomaly_reason or "Anomaly spike detected",
            })

        logger.info(
            "mock_event_generated",
            device_id=event.device_id,
            anomaly=event.anomaly_flag,
            anomaly_reason=event.anomaly_reason,
        )
        return {"success": True, "events_generated": 1, "device_id": event.device_id}

    task = Task(
        "RunMockScheduler",
        run_mock_scheduler,
        "Generates one mock device event and triggers follow-up flows",
        signals=[
            sig.RUNNER_NEW_TELEMETRY,
            sig.HEALTH_CHECK,
            sig.MAINTENANCE_NEEDED,
            sig.HEALTH_ALERT_ESCALATION,
        ],
    )
    return Routine("RunMockScheduler", [task], trigger_signals=[sig.TICK_STARTED])


def build_telemetry_ingestion(db: DatabaseBinding) -> Routine:
    def generate_record(ctx: Context, emit: Emitter) -> Context:
        readings = dict(ctx.get("readings") or {})
        ctx["data"] = {
            "device_id": ctx["device_id"],
            "timestamp": _parse_timestamp(ctx.get("timestamp")),
            "temperature": readings.get("temperature"),
            "humidity": readings.get("humidity"),
            "battery": readings.get("battery"),
            "raw_json": {
                "readings": readings,
                "anomaly_flag": ctx.get("anomaly_flag", False),
                "anomaly_reason": ctx.get("anomaly_reason"),
            },
        }
        return ctx

    generate = Task(
        "GenerateRandomTelemetry",
        generate_record,
        "Shapes a mock event into a telemetry record",
    )
    generate.then(
        insert_task(
            db,
            TELEMETRY,
            signal=sig.TELEMETRY_INSERTED,
            target_services=[TELEMETRY_COLLECTOR],
            payload_from=telemetry_inserted_payload,
        )
    )
    return Routine(
        "MockTelemetryIngestion",
        [generate],
        "Persists a mock telemetry event to kick off monitoring flows",
        trigger_signals=[sig.RUNNER_NEW_TELEMETRY],
    )


def _forwarder(
    routine_name: str,
    task_name: str,
    trigger: str,
    signal_name: str,
    target: str,
    payload,
) -> Routine:
    def forward(ctx: Context, emit: Emitter) -> None:
        emit(signal_name, payload(ctx), target_services=[target])
        logger.info("flow_triggered", signal=signal_name, target=target, device_id=ctx.get("device_id"))

    task = Task(task_name, forward, f"Emits {signal_name} to {target}", signals=[signal_name])
    return Routine(routine_name, [task], trigger_signals=[trigger])


def install(service: Service, db: DatabaseBinding, generator: TelemetryGenerator) -> Service:
    service.add_routine(build_mock_scheduler(generator))
    service.add_routine(build_telemetry_ingestion(db))
    service.add_routine(_forwarder(
        "TriggerHealthCheck",
        "EmitHealthCheckSignal",
        sig.HEALTH_CHECK,
        sig.RUNNER_HEALTH_CHECK_TRIGGERED,
        TELEMETRY_COLLECTOR,
        lambda ctx: {"device_id": ctx["device_id"], "trigger_type": "scheduled"},
    ))
    service.add_routine(_forwarder(
        "TriggerPredictiveMaintenance",
        "EmitPredictiveSignal",
        sig.MAINTENANCE_NEEDED,
        sig.RUNNER_PREDICTIVE_MAINTENANCE_TRIGGERED,
        PREDICTOR,
        lambda ctx: {"device_id": ctx["device_id"], "recent_anomaly": bool(ctx.get("anomaly_flag"))},
    ))
    service.add_routine(_forwarder(
        "TriggerAlertEscalation",
        "EmitEscalationSignal",
        sig.HEALTH_ALERT_ESCALATION,
        sig.RUNNER_ALERT_ESCALATION_TRIGGERED,
        ALERT_SERVICE,
        lambda ctx: {
            "device_id": ctx["device_id"],
            "severity": ctx.get("severity", "high"),
            "reason": ctx.get("reason"),
        },
    ))
    return service
