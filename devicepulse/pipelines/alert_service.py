"""
Alert Service routines.

AnomalyAlert     global.telemetry.anomaly_detected
PredictionAlert  predictor.maintenance_needed, predictor.prediction_ready
EscalationAlert  runner.alert_escalation_triggered

Each routine builds an alert record, then DispatchAlert suppresses repeats
within the cooldown, persists the alert and emits a local `alert.created`.
"""

from typing import Any, Callable

import structlog

from devicepulse.db.binding import ALERT, DatabaseBinding
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.service import Service
from devicepulse.orchestration.task import Emitter, Routine, Task
from devicepulse.services.alert_cooldown import SEVERITY_RANK, AlertCooldown
from devicepulse.signals import models as sig

logger = structlog.get_logger(__name__)

AlertBuilder = Callable[[Context], dict[str, Any]]


def anomaly_alert(ctx: Context) -> dict[str, Any]:
    score = float(ctx.get("anomaly_score") or 0.0)
    metrics = ctx.get("metrics") or {}
    flagged = sorted(name for name, result in metrics.items() if result.get("anomalous"))
    return {
        "type": "anomaly",
        "severity": "high" if score >= 0.9 else "medium",
        "reason": (
            f"Anomaly score {score:.2f}"
            + (f" ({', '.join(flagged)})" if flagged else "")
        ),
    }


def prediction_alert(ctx: Context) -> dict[str, Any]:
    prediction = ctx.get("prediction") or {}
    urgency = ctx.get("urgency", "low")
    probability = float(prediction.get("failure_probability") or 0.0)
    return {
        "type": "prediction",
        "severity": "high" if urgency == "high" else "low",
        "reason": (
            f"Failure probability {probability:.2f}, "
            f"predicted by {prediction.get('predicted_eta', 'unknown')}"
        ),
    }


def escalation_alert(ctx: Context) -> dict[str, Any]:
    severity = ctx.get("severity") or "high"
    if severity not in SEVERITY_RANK:
        severity = "high"
    return {
        "type": "escalation",
        "severity": severity,
        "reason": ctx.get("reason") or "Escalation requested",
    }


def build_alert_task(name: str, builder: AlertBuilder) -> Task:
    def build(ctx: Context, emit: Emitter) -> Context:
        ctx["alert"] = {"device_id": ctx["device_id"], "resolved": False, **builder(ctx)}
        return ctx

    return Task(name, build, "Builds an alert record")


def build_dispatch(db: DatabaseBinding, cooldown: AlertCooldown) -> Task:
    async def dispatch(ctx: Context, emit: Emitter) -> Context:
        alert = ctx["alert"]
        suppressed, reason = cooldown.should_suppress(
            alert["device_id"], alert["type"], alert["severity"],
        )
        if suppressed:
            ctx["suppressed"] = True
            ctx["suppressed_reason"] = reason
            logger.info(
                "alert_suppressed",
                device_id=alert["device_id"],
                alert_type=alert["type"],
                reason=reason,
            )
            return ctx

        cooldown.record_fired(alert["device_id"], alert["type"], alert["severity"])
        persisted = await db.insert(ALERT, alert)
        ctx["suppressed"] = False
        ctx["persisted"] = persisted
        emit(sig.ALERT_CREATED, {
            "device_id": persisted["device_id"],
            "alert_id": persisted["uuid"],
            "type": persisted["type"],
            "severity": persisted["severity"],
            "reason": persisted.get("reason"),
        })
        logger.warning(
            "alert_created",
            device_id=persisted["device_id"],
            alert_type=persisted["type"],
            severity=persisted["severity"],
        )
        return ctx

    return Task(
        "DispatchAlert",
        dispatch,
        "Applies the cooldown, persists the alert and announces it",
        signals=[sig.ALERT_CREATED],
    )


def _alert_routine(
    name: str,
    builder_name: str,
    builder: AlertBuilder,
    triggers: list[str],
    db: DatabaseBinding,
    cooldown: AlertCooldown,
) -> Routine:
    build = build_alert_task(builder_name, builder)
    build.then(build_dispatch(db, cooldown))
    return Routine(name, [build], trigger_signals=triggers)


def install(service: Service, db: DatabaseBinding, cooldown: AlertCooldown) -> Service:
    service.add_routine(_alert_routine(
        "AnomalyAlert", "BuildAnomalyAlert", anomaly_alert,
        [sig.ANOMALY_DETECTED], db, cooldown,
    ))
    service.add_routine(_alert_routine(
        "PredictionAlert", "BuildPredictionAlert", prediction_alert,
        [sig.MAINTENANCE_NEEDED, sig.PREDICTION_READY], db, cooldown,
    ))
    service.add_routine(_alert_routine(
        "EscalationAlert", "BuildEscalationAlert", escalation_alert,
        [sig.RUNNER_ALERT_ESCALATION_TRIGGERED], db, cooldown,
    ))
    return service
