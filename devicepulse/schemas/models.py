"""
Domain result models.

Results are pydantic models so they can be dumped into a Context or a
signal payload with `model_dump()`.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class Readings(BaseModel):
    """One sensor sample. Numeric fields reject strings and booleans."""

    temperature: float = Field(strict=True)
    humidity: float = Field(strict=True)
    battery: Optional[float] = Field(default=None, strict=True)


class AnomalyResult(BaseModel):
    """Score of one metric against its recent history."""

    metric: str
    score: float = Field(ge=0.0, le=1.0)
    anomalous: bool
    reason: str
    z_score: Optional[float] = None


class AggregateAnomaly(BaseModel):
    """Merged per-metric results for one reading."""

    score: float = Field(ge=0.0, le=1.0)
    anomalous: bool
    metrics: dict[str, AnomalyResult] = Field(default_factory=dict)


class Trend(StrEnum):
    STABLE = "stable"
    INCREASING = "increasing"


class Urgency(StrEnum):
    LOW = "low"
    HIGH = "high"


class WeatherData(BaseModel):
    temperature: float
    humidity: float
    condition: str


NEUTRAL_WEATHER = WeatherData(temperature=20.0, humidity=50.0, condition="neutral")


class RiskFactors(BaseModel):
    anomalies: int
    trend: Trend
    weather_impact: str


class Prediction(BaseModel):
    """Failure forecast for one device."""

    failure_probability: float = Field(ge=0.0, le=1.0)
    predicted_eta: datetime
    risk_factors: RiskFactors
    urgency: Urgency
