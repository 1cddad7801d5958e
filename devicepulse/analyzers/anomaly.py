"""
Anomaly Scorer.

Scores a new reading against the recent window of the same metric:
1. Fewer than 2 samples → score 0, not anomalous ("insufficient data")
2. z = |reading - mean| / population std-dev
3. score = min(z / 3, 1), anomalous when z > 2

A window with zero variance has no defined z-score: a reading equal to the
constant is normal, any other reading is maximally anomalous.
"""

import math
from typing import Iterable, Mapping, Optional, Sequence

import structlog

from devicepulse.schemas.models import AggregateAnomaly, AnomalyResult

logger = structlog.get_logger(__name__)

MIN_SAMPLES = 2
Z_NORMALISER = 3.0
Z_ANOMALY_THRESHOLD = 2.0
AGGREGATE_THRESHOLD = 0.7


class AnomalyScorer:
    """Z-score based scoring of single metrics and their aggregate."""

    def __init__(
        self,
        z_threshold: float = Z_ANOMALY_THRESHOLD,
        aggregate_threshold: float = AGGREGATE_THRESHOLD,
    ):
        self.z_threshold = z_threshold
        self.aggregate_threshold = aggregate_threshold

    def score(self, window: Sequence[float], reading: float, metric: str) -> AnomalyResult:
        samples = [float(v) for v in window if v is not None]
        if len(samples) < MIN_SAMPLES:
            return AnomalyResult(
                metric=metric, score=0.0, anomalous=False, reason="insufficient data",
            )

        mean = sum(samples) / len(samples)
        variance = sum((v - mean) ** 2 for v in samples) / len(samples)
        std_dev = math.sqrt(variance)

        if std_dev == 0:
            if math.isclose(reading, mean):
                return AnomalyResult(
                    metric=metric, score=0.0, anomalous=False, reason="normal", z_score=0.0,
                )
            logger.debug("anomaly_zero_variance", metric=metric, reading=reading, constant=mean)
            return AnomalyResult(
                metric=metric,
                score=1.0,
                anomalous=True,
                reason="reading deviates from constant history",
                z_score=None,
            )

        z = abs(reading - mean) / std_dev
        anomalous = z > self.z_threshold
        return AnomalyResult(
            metric=metric,
            score=round(min(z / Z_NORMALISER, 1.0), 4),
            anomalous=anomalous,
            reason=f"z-score {z:.2f} exceeds threshold" if anomalous else "normal",
            z_score=round(z, 4),
        )

    def score_rows(
        self,
        rows: Iterable[Mapping],
        readings: Mapping[str, Optional[float]],
        metric: str,
    ) -> AnomalyResult:
        """Score `readings[metric]` against the same field of history rows."""
        window = [row.get(metric) for row in rows]
        return self.score(window, float(readings[metric]), metric)

    def aggregate(self, results: Iterable[AnomalyResult]) -> AggregateAnomaly:
        """Mean of per-metric scores; anomalous when strictly above the threshold."""
        by_metric = {r.metric: r for r in results}
        if not by_metric:
            return AggregateAnomaly(score=0.0, anomalous=False, metrics={})

        score = round(sum(r.score for r in by_metric.values()) / len(by_metric), 4)
        return AggregateAnomaly(
            score=score,
            anomalous=score > self.aggregate_threshold,
            metrics=by_metric,
        )
