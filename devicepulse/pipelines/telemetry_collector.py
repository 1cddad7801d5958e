"""
Telemetry Collector routines.

HealthCheck          global.telemetry.inserted
    ValidateTelemetry → FilterOutliers → CheckAnomaly@anomaly-detector

ReactiveHealthCheck  runner.health_check_triggered
    RevalidateTelemetry (latest stored reading) → same chain

MaintenanceRecheck   predictor.maintenance_needed
    RevalidateTelemetry, at most once per stored reading → same chain
"""

from collections import OrderedDict
from typing import Any, Optional

import structlog

from devicepulse.db.binding import TELEMETRY, DatabaseBinding
from devicepulse.exceptions import TelemetryValidationError
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.service import Service
from devicepulse.orchestration.task import DeputyTask, Emitter, Routine, Task
from devicepulse.pipelines.names import ANOMALY_DETECTOR
from devicepulse.pipelines.states import CycleState
from devicepulse.schemas.stages import TelemetryStage
from devicepulse.signals import models as sig

logger = structlog.get_logger(__name__)

# Fixed reference distribution for outlier filtering
OUTLIER_MEAN = 50.0
OUTLIER_STD_DEV = 20.0
OUTLIER_Z = 3.0

RECHECK_LEDGER_SIZE = 1024


class RecheckLedger:
    """
    Remembers which stored readings were already re-checked.

    A high-urgency prediction asks the collector to re-check the device, and
    that re-check can raise the same anomaly that caused the prediction.
    Re-checking each stored reading only once keeps that cycle finite.
    """

    def __init__(self, max_size: int = RECHECK_LEDGER_SIZE):
        self.max_size = max_size
        self._seen: OrderedDict[str, None] = OrderedDict()

    def claim(self, key: str) -> bool:
        """Record `key`; False when it was already recorded."""
        if key in self._seen:
            return False
        self._seen[key] = None
        if len(self._seen) > self.max_size:
            self._seen.popitem(last=False)
        return True

    def __len__(self) -> int:
        return len(self._seen)


def validate_telemetry(ctx: Context, emit: Emitter) -> Context:
    stage = ctx.validate(TelemetryStage, "ValidateTelemetry")
    ctx["readings"] = stage.telemetry.readings.model_dump()
    emit(sig.TELEMETRY_DATA_VALIDATED, {"device_id": stage.device_id, "valid": True})
    logger.debug("telemetry_validated", device_id=stage.device_id)
    return ctx


def filter_outliers(ctx: Context, emit: Emitter) -> Context:
    temperature = ctx["readings"]["temperature"]
    z = abs(temperature - OUTLIER_MEAN) / OUTLIER_STD_DEV
    if z > OUTLIER_Z:
        ctx["filtered"] = False
        emit(sig.TELEMETRY_OUTLIER_DETECTED, {"device_id": ctx["device_id"], "metric": "temperature"})
        logger.info("telemetry_outlier_filtered", device_id=ctx["device_id"], temperature=temperature)
    else:
        ctx["filtered"] = True
    return ctx


def build_health_chain(deputy_concurrency: int = 1) -> Task:
    """A fresh validate → filter → delegated anomaly check chain."""
    validate = Task(
        "ValidateTelemetry",
        validate_telemetry,
        "Validates incoming telemetry",
        signals=[sig.TELEMETRY_DATA_VALIDATED],
        state=CycleState.VALIDATING,
    )
    outliers = Task(
        "FilterOutliers",
        filter_outliers,
        "Flags temperature readings more than 3 standard deviations from 50",
        signals=[sig.TELEMETRY_OUTLIER_DETECTED],
        state=CycleState.FILTERING,
    )
    check = DeputyTask(
        "CheckAnomaly",
        ANOMALY_DETECTOR,
        concurrency=deputy_concurrency,
        state=CycleState.DELEGATED_ANOMALY_CHECK,
    )
    validate.then(outliers.then(check))
    return validate


def _reading_key(device_id: str, row: dict[str, Any]) -> str:
    return row.get("uuid") or f"{device_id}@{row.get('timestamp')}"


def build_revalidate(db: DatabaseBinding, ledger: Optional[RecheckLedger] = None) -> Task:
    async def revalidate(ctx: Context, emit: Emitter) -> Context:
        device_id = ctx.get("device_id")
        if not device_id:
            raise TelemetryValidationError("Re-check requested without device_id")

        rows = await db.query(TELEMETRY, {"device_id": device_id}, sort={"timestamp": "desc"}, limit=1)
        if not rows:
            raise TelemetryValidationError(
                f"No telemetry recorded for {device_id}", device_id=device_id,
            )

        latest = rows[0]
        if ledger is not None and not ledger.claim(_reading_key(device_id, latest)):
            logger.info("telemetry_recheck_skipped", device_id=device_id, telemetry_uuid=latest.get("uuid"))
            raise TelemetryValidationError(
                f"Latest telemetry for {device_id} was already re-checked",
                device_id=device_id,
            )

        ctx["telemetry"] = {
            "uuid": latest.get("uuid"),
            "timestamp": latest.get("timestamp"),
            "readings": {
                "temperature": latest.get("temperature"),
                "humidity": latest.get("humidity"),
                "battery": latest.get("battery"),
            },
        }
        emit(sig.TELEMETRY_RECHECK_INITIATED, {"device_id": device_id})
        return ctx

    return Task(
        "RevalidateTelemetry",
        revalidate,
        "Loads the latest stored reading for a re-check",
        signals=[sig.TELEMETRY_RECHECK_INITIATED],
        state=CycleState.VALIDATING,
    )


def install(
    service: Service,
    db: DatabaseBinding,
    deputy_concurrency: int = 1,
    ledger: Optional[RecheckLedger] = None,
) -> Service:
    service.add_routine(Routine(
        "HealthCheck",
        [build_health_chain(deputy_concurrency)],
        "Validate, filter and delegate anomaly detection for new telemetry",
        trigger_signals=[sig.TELEMETRY_INSERTED],
    ))

    revalidate = build_revalidate(db)
    revalidate.then(build_health_chain(deputy_concurrency))
    service.add_routine(Routine(
        "ReactiveHealthCheck",
        [revalidate],
        "Re-runs the health check on the latest reading",
        trigger_signals=[sig.RUNNER_HEALTH_CHECK_TRIGGERED],
    ))

    maintenance = build_revalidate(db, ledger if ledger is not None else RecheckLedger())
    maintenance.then(build_health_chain(deputy_concurrency))
    service.add_routine(Routine(
        "MaintenanceRecheck",
        [maintenance],
        "Re-checks the latest reading once after a high-risk prediction",
        trigger_signals=[sig.MAINTENANCE_NEEDED],
    ))
    return service
