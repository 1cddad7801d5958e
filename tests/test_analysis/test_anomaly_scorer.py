"""
Tests for z-score anomaly scoring.
"""

import pytest

from devicepulse.analyzers.anomaly import AnomalyScorer
from devicepulse.schemas.models import AnomalyResult


@pytest.fixture
def scorer() -> AnomalyScorer:
    return AnomalyScorer()


class TestSingleMetric:
    def test_outlier_is_anomalous(self, scorer):
        result = scorer.score([10.0, 20.0, 30.0], 40.0, "temperature")
        assert result.z_score == pytest.approx(2.4495, abs=1e-4)
        assert result.score == pytest.approx(0.8165, abs=1e-4)
        assert result.anomalous
        assert result.reason == "z-score 2.45 exceeds threshold"

    def test_reading_near_mean_is_normal(self, scorer):
        result = scorer.score([10.0, 20.0, 30.0], 21.0, "temperature")
        assert not result.anomalous
        assert result.reason == "normal"
        assert result.score < 0.1

    def test_tight_window_large_jump(self, scorer):
        result = scorer.score([48.0, 50.0, 52.0, 49.0, 51.0], 80.0, "temperature")
        assert result.z_score == pytest.approx(21.2132, abs=1e-4)
        assert result.score == 1.0
        assert result.anomalous

    def test_score_is_capped(self, scorer):
        result = scorer.score([10.0, 20.0, 30.0], 500.0, "humidity")
        assert result.score == 1.0

    def test_z_exactly_at_threshold_is_normal(self, scorer):
        # mean 0, population std 1
        result = scorer.score([-1.0, 1.0], 2.0, "temperature")
        assert result.z_score == pytest.approx(2.0)
        assert not result.anomalous

    @pytest.mark.parametrize("window", [[], [25.0]])
    def test_insufficient_data(self, scorer, window):
        result = scorer.score(window, 99.0, "temperature")
        assert result.score == 0.0
        assert not result.anomalous
        assert result.reason == "insufficient data"

    def test_missing_values_are_skipped(self, scorer):
        result = scorer.score([None, 20.0], 99.0, "temperature")
        assert result.reason == "insufficient data"


class TestZeroVariance:
    def test_equal_reading_is_normal(self, scorer):
        result = scorer.score([20.0, 20.0, 20.0], 20.0, "temperature")
        assert not result.anomalous
        assert result.score == 0.0
        assert result.z_score == 0.0

    def test_constant_window_with_distant_reading(self, scorer):
        result = scorer.score([20.0] * 5, 50.0, "temperature")
        assert result.anomalous
        assert result.score == 1.0
        assert result.reason == "reading deviates from constant history"

    def test_different_reading_is_maximal(self, scorer):
        result = scorer.score([20.0, 20.0, 20.0], 21.0, "temperature")
        assert result.anomalous
        assert result.score == 1.0
        assert result.z_score is None


class TestRows:
    def test_scores_named_field(self, scorer):
        rows = [{"temperature": 10.0}, {"temperature": 20.0}, {"temperature": 30.0}]
        result = scorer.score_rows(rows, {"temperature": 40.0, "humidity": 50.0}, "temperature")
        assert result.metric == "temperature"
        assert result.anomalous


class TestAggregate:
    def _result(self, metric: str, score: float) -> AnomalyResult:
        return AnomalyResult(metric=metric, score=score, anomalous=score > 0.6, reason="test")

    def test_mean_at_threshold_is_not_anomalous(self, scorer):
        aggregate = scorer.aggregate([self._result("temperature", 0.9), self._result("humidity", 0.5)])
        assert aggregate.score == 0.7
        assert not aggregate.anomalous

    def test_mean_above_threshold_is_anomalous(self, scorer):
        aggregate = scorer.aggregate([self._result("temperature", 0.9), self._result("humidity", 0.6)])
        assert aggregate.score == 0.75
        assert aggregate.anomalous
        assert set(aggregate.metrics) == {"temperature", "humidity"}

    def test_empty_is_zero(self, scorer):
        aggregate = scorer.aggregate([])
        assert aggregate.score == 0.0
        assert not aggregate.anomalous
