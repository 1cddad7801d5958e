"""
Prediction Engine — failure probability and ETA for one device.

probability = min(base × weather × trend, 1)
  base    = min(anomaly_count / 10, 1)
  weather = 1.5 when the condition is rain or thunderstorm, else 1.0
  trend   = 1.2 when more than 3 high-score anomalies, else 1.0

ETA: high urgency (> 0.7) fails within 1–4 days, otherwise 7–37 days.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from devicepulse.schemas.models import (
    Prediction,
    RiskFactors,
    Trend,
    Urgency,
    WeatherData,
)

logger = structlog.get_logger(__name__)

HIGH_SCORE_THRESHOLD = 0.5
INCREASING_TREND_COUNT = 3
SEVERE_WEATHER = frozenset({"rain", "thunderstorm"})
WEATHER_MULTIPLIER = 1.5
TREND_MULTIPLIER = 1.2
URGENCY_THRESHOLD = 0.7


class PredictionEngine:
    """Deterministic given an injected RNG and clock."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── History ─────────────────────────────────────────────────────────

    @staticmethod
    def high_score_anomalies(history: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Health metrics whose anomaly score exceeds 0.5."""
        return [
            dict(m) for m in history
            if m.get("anomaly_score") is not None and float(m["anomaly_score"]) > HIGH_SCORE_THRESHOLD
        ]

    @staticmethod
    def trend(anomaly_count: int) -> Trend:
        return Trend.INCREASING if anomaly_count > INCREASING_TREND_COUNT else Trend.STABLE

    # ── Prediction ──────────────────────────────────────────────────────

    def predict(self, anomaly_count: int, trend: Trend, weather: WeatherData) -> Prediction:
        base = min(anomaly_count / 10, 1.0)
        weather_multiplier = (
            WEATHER_MULTIPLIER if weather.condition.lower() in SEVERE_WEATHER else 1.0
        )
        trend_multiplier = TREND_MULTIPLIER if trend == Trend.INCREASING else 1.0
        probability = round(min(base * weather_multiplier * trend_multiplier, 1.0), 4)

        high = probability > URGENCY_THRESHOLD
        eta_days = 1 + self._rng.random() * 3 if high else 7 + self._rng.random() * 30
        eta = self._clock() + timedelta(days=eta_days)

        logger.debug(
            "failure_probability_computed",
            anomalies=anomaly_count,
            trend=trend.value,
            condition=weather.condition,
            probability=probability,
        )

        return Prediction(
            failure_probability=probability,
            predicted_eta=eta,
            risk_factors=RiskFactors(
                anomalies=anomaly_count,
                trend=trend,
                weather_impact=weather.condition,
            ),
            urgency=Urgency.HIGH if high else Urgency.LOW,
        )
