"""
Stage schemas — what a Context must hold when it enters a pipeline stage.

Tasks declare one with `requires=`; the executor validates the Context
before the handler runs and rejects the run on mismatch. Extra keys are
allowed since a Context accumulates fields as it moves along a chain.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from devicepulse.schemas.models import Readings


class _Stage(BaseModel):
    model_config = ConfigDict(extra="allow")

    device_id: str = Field(min_length=1)


class TelemetryPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    readings: Readings
    timestamp: Optional[datetime] = None


class TelemetryStage(_Stage):
    """Entry of the health check chain."""

    telemetry: TelemetryPayload


class AnomalyStage(_Stage):
    """Per-metric anomaly checks: the current reading plus its history."""

    readings: Readings
    telemetry_history: list[dict[str, Any]] = Field(default_factory=list)


class PredictionStage(_Stage):
    """Entry of predictive maintenance."""
