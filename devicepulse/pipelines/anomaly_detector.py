"""
Anomaly Detector routines.

CheckAnomaly (deputy entry point, no trigger signal):
    PrepareQuery → QueryTelemetry → {CheckTemperatureAnomaly ‖ CheckHumidityAnomaly}
        → MergeAnomalyResults (unique) → InsertHealthMetric
"""

import structlog

from devicepulse.analyzers.anomaly import AnomalyScorer
from devicepulse.db.binding import HEALTH_METRIC, TELEMETRY, DatabaseBinding
from devicepulse.db.tasks import insert_task, query_task
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.service import Service
from devicepulse.orchestration.task import Emitter, Routine, Task, UniqueTask
from devicepulse.pipelines.names import ALERT_SERVICE, PREDICTOR
from devicepulse.pipelines.states import CycleState
from devicepulse.schemas.models import AnomalyResult
from devicepulse.schemas.stages import AnomalyStage
from devicepulse.signals import models as sig

logger = structlog.get_logger(__name__)

METRIC_SPIKES = {
    "temperature": sig.ANOMALY_TEMPERATURE_SPIKE,
    "humidity": sig.ANOMALY_HUMIDITY_SPIKE,
}


def prepare_query(ctx: Context, emit: Emitter) -> Context:
    ctx["query"] = {"filter": {"device_id": ctx["device_id"]}}
    return ctx


def _metric_check(scorer: AnomalyScorer, metric: str, task_name: str, state: str) -> Task:
    spike_signal = METRIC_SPIKES[metric]

    def check(ctx: Context, emit: Emitter) -> Context:
        stage = ctx.validate(AnomalyStage, task_name)
        result = scorer.score_rows(stage.telemetry_history, stage.readings.model_dump(), metric)
        if result.anomalous:
            emit(spike_signal, {
                "device_id": stage.device_id,
                "z_score": result.z_score,
                "score": result.score,
            })
            logger.info(
                "metric_anomaly_detected",
                device_id=stage.device_id,
                metric=metric,
                z_score=result.z_score,
                score=result.score,
            )
        ctx[f"{metric}_anomaly"] = result.model_dump()
        return ctx

    return Task(
        task_name,
        check,
        f"Scores {metric} against recent history",
        signals=[spike_signal],
        state=state,
    )


def build_merge(scorer: AnomalyScorer) -> UniqueTask:
    def merge(ctx: Context, emit: Emitter) -> Context:
        results = []
        for metric in METRIC_SPIKES:
            raw = ctx.get(f"{metric}_anomaly")
            if raw is None:
                raw = {"metric": metric, "score": 0.0, "anomalous": False, "reason": "missing"}
            results.append(AnomalyResult.model_validate(raw))

        aggregate = scorer.aggregate(results)
        ctx["anomaly_score"] = aggregate.score
        ctx["anomaly_detected"] = aggregate.anomalous

        if aggregate.anomalous:
            emit(
                sig.ANOMALY_DETECTED,
                {
                    "device_id": ctx["device_id"],
                    "anomaly_score": aggregate.score,
                    "metrics": {k: v.model_dump() for k, v in aggregate.metrics.items()},
                },
                target_services=[PREDICTOR, ALERT_SERVICE],
            )
            logger.info("anomaly_detected", device_id=ctx["device_id"], score=aggregate.score)

        ctx["data"] = {
            "device_id": ctx["device_id"],
            "anomaly_score": aggregate.score,
            "failure_probability": None,
            "predicted_eta": None,
        }
        return ctx

    return UniqueTask(
        "MergeAnomalyResults",
        merge,
        "Merges per-metric results into an overall score",
        owners={
            "temperature_anomaly": "CheckTemperatureAnomaly",
            "humidity_anomaly": "CheckHumidityAnomaly",
        },
        signals=[sig.ANOMALY_DETECTED],
        join_state=CycleState.JOINING,
        state=CycleState.SCORED,
    )


def build_check_anomaly(db: DatabaseBinding, scorer: AnomalyScorer, window: int = 20) -> Routine:
    prepare = Task("PrepareQuery", prepare_query, "Builds the telemetry history filter")
    history = query_task(
        db,
        TELEMETRY,
        into="telemetry_history",
        sort={"timestamp": "desc"},
        limit=window,
    )
    temperature = _metric_check(scorer, "temperature", "CheckTemperatureAnomaly", CycleState.TEMP_CHECK)
    humidity = _metric_check(scorer, "humidity", "CheckHumidityAnomaly", CycleState.HUMIDITY_CHECK)
    merge = build_merge(scorer)

    prepare.then(history.then(temperature, humidity))
    temperature.then(merge)
    humidity.then(merge)
    merge.then(insert_task(db, HEALTH_METRIC, state=CycleState.PERSISTED))

    return Routine(
        "CheckAnomaly",
        [prepare],
        "Scores a reading against recent history and persists a health metric",
    )


def install(
    service: Service,
    db: DatabaseBinding,
    scorer: AnomalyScorer,
    window: int = 20,
) -> Service:
    service.add_routine(build_check_anomaly(db, scorer, window), expose=True)
    return service
