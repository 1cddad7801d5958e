"""
Predictor routines.

PredictiveMaintenance  global.telemetry.anomaly_detected, runner.predictive_maintenance_triggered
    InitiatePrediction → {QueryHealthMetric → AnalyzeAnomalyHistory ‖ CallWeatherApi}
        → ComputeFailurePrediction (unique) → InsertHealthMetric
"""

import structlog

from devicepulse.db.binding import HEALTH_METRIC, DatabaseBinding
from devicepulse.db.tasks import insert_task, query_task
from devicepulse.engine.prediction import PredictionEngine
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.service import Service
from devicepulse.orchestration.task import Emitter, Routine, Task, UniqueTask
from devicepulse.pipelines.names import ALERT_SERVICE, TELEMETRY_COLLECTOR
from devicepulse.pipelines.states import CycleState
from devicepulse.schemas.models import NEUTRAL_WEATHER, Trend, Urgency, WeatherData
from devicepulse.schemas.stages import PredictionStage
from devicepulse.services.weather_client import DeviceLocator, WeatherClient
from devicepulse.signals import models as sig

logger = structlog.get_logger(__name__)


def initiate_prediction(ctx: Context, emit: Emitter) -> Context:
    emit(sig.PREDICTION_STARTED, {"device_id": ctx["device_id"]})
    logger.info("prediction_started", device_id=ctx["device_id"])
    ctx["query"] = {"filter": {"device_id": ctx["device_id"]}}
    return ctx


def build_analyze_history(engine: PredictionEngine) -> Task:
    def analyze(ctx: Context, emit: Emitter) -> Context:
        anomalies = engine.high_score_anomalies(ctx.get("health_metrics") or [])
        trend = engine.trend(len(anomalies))
        ctx["anomaly_history"] = anomalies
        ctx["trend"] = trend.value
        logger.info(
            "anomaly_history_analyzed",
            device_id=ctx["device_id"],
            high_score_events=len(anomalies),
            trend=trend.value,
        )
        return ctx

    return Task(
        "AnalyzeAnomalyHistory",
        analyze,
        "Counts recent high-score anomalies and derives the trend",
    )


def build_call_weather(weather: WeatherClient, locator: DeviceLocator) -> Task:
    async def call_weather(ctx: Context, emit: Emitter) -> Context:
        lat, lon = locator.locate(ctx["device_id"])
        data = await weather.lookup(lat, lon)
        ctx["weather"] = data.model_dump()
        return ctx

    return Task(
        "CallWeatherApi",
        call_weather,
        "Looks up current weather at the device location",
        state=CycleState.WEATHER_FETCH,
    )


def build_compute_prediction(engine: PredictionEngine) -> UniqueTask:
    def compute(ctx: Context, emit: Emitter) -> Context:
        history = ctx.get("anomaly_history") or []
        trend = Trend(ctx.get("trend") or Trend.STABLE)
        weather_raw = ctx.get("weather")
        weather = WeatherData.model_validate(weather_raw) if weather_raw else NEUTRAL_WEATHER

        prediction = engine.predict(len(history), trend, weather)
        payload = {
            "device_id": ctx["device_id"],
            "prediction": prediction.model_dump(mode="json"),
            "urgency": prediction.urgency.value,
        }
        if prediction.urgency == Urgency.HIGH:
            emit(sig.MAINTENANCE_NEEDED, payload, target_services=[TELEMETRY_COLLECTOR, ALERT_SERVICE])
            logger.warning(
                "high_risk_prediction",
                device_id=ctx["device_id"],
                failure_probability=prediction.failure_probability,
                predicted_eta=prediction.predicted_eta.isoformat(),
            )
        else:
            emit(sig.PREDICTION_READY, payload, target_services=[ALERT_SERVICE])

        ctx["prediction"] = prediction.model_dump(mode="json")
        ctx["data"] = {
            "device_id": ctx["device_id"],
            "anomaly_score": ctx.get("anomaly_score") or 0.0,
            "failure_probability": prediction.failure_probability,
            "predicted_eta": prediction.predicted_eta,
        }
        return ctx

    return UniqueTask(
        "ComputeFailurePrediction",
        compute,
        "Combines anomaly history and weather into a failure prediction",
        owners={
            "anomaly_history": "AnalyzeAnomalyHistory",
            "trend": "AnalyzeAnomalyHistory",
            "weather": "CallWeatherApi",
        },
        signals=[sig.MAINTENANCE_NEEDED, sig.PREDICTION_READY],
        join_state=CycleState.JOINING,
        state=CycleState.PREDICTED,
    )


def build_predictive_maintenance(
    db: DatabaseBinding,
    engine: PredictionEngine,
    weather: WeatherClient,
    locator: DeviceLocator,
    history_limit: int = 10,
) -> Routine:
    initiate = Task(
        "InitiatePrediction",
        initiate_prediction,
        "Starts a prediction and builds the history filter",
        signals=[sig.PREDICTION_STARTED],
        requires=PredictionStage,
        state=CycleState.PREDICTING,
    )
    history = query_task(
        db,
        HEALTH_METRIC,
        into="health_metrics",
        sort={"timestamp": "desc"},
        limit=history_limit,
        state=CycleState.HISTORY_FETCH,
    )
    analyze = build_analyze_history(engine)
    call_weather = build_call_weather(weather, locator)
    compute = build_compute_prediction(engine)

    initiate.then(history.then(analyze), call_weather)
    analyze.then(compute)
    call_weather.then(compute)
    compute.then(insert_task(db, HEALTH_METRIC, state=CycleState.PERSISTED))

    return Routine(
        "PredictiveMaintenance",
        [initiate],
        "Fan-out history and weather, fan-in prediction, persist and signal",
        trigger_signals=[sig.ANOMALY_DETECTED, sig.RUNNER_PREDICTIVE_MAINTENANCE_TRIGGERED],
    )


def install(
    service: Service,
    db: DatabaseBinding,
    engine: PredictionEngine,
    weather: WeatherClient,
    locator: DeviceLocator,
    history_limit: int = 10,
) -> Service:
    service.add_routine(
        build_predictive_maintenance(db, engine, weather, locator, history_limit),
        expose=True,
    )
    return service
