from devicepulse.schemas.models import (
    NEUTRAL_WEATHER,
    AggregateAnomaly,
    AnomalyResult,
    Prediction,
    Readings,
    RiskFactors,
    Trend,
    Urgency,
    WeatherData,
)
from devicepulse.schemas.stages import (
    AnomalyStage,
    PredictionStage,
    TelemetryPayload,
    TelemetryStage,
)

__all__ = [
    "NEUTRAL_WEATHER",
    "AggregateAnomaly",
    "AnomalyResult",
    "AnomalyStage",
    "Prediction",
    "PredictionStage",
    "Readings",
    "RiskFactors",
    "TelemetryPayload",
    "TelemetryStage",
    "Trend",
    "Urgency",
    "WeatherData",
]
