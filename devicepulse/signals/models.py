"""
Signal — named asynchronous event with a payload.

Signal names form the cross-service wire contract. A signal is frozen once
built and its payload is held privately: `payload` hands out a fresh deep
copy, so nothing the emitter or a consumer does afterwards can change what
other consumers observe.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic_core import to_jsonable_python


class Signal(BaseModel):
    """A published signal."""

    model_config = ConfigDict(frozen=True)

    signal_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    target_services: Optional[frozenset[str]] = None
    source_service: Optional[str] = None
    causation_run_id: Optional[str] = None
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    _payload: dict[str, Any] = PrivateAttr(default_factory=dict)

    def __init__(self, payload: Optional[Mapping[str, Any]] = None, **data: Any) -> None:
        super().__init__(**data)
        self._payload = copy.deepcopy(dict(payload or {}))

    @field_validator("target_services", mode="before")
    @classmethod
    def _normalise_targets(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        targets = frozenset(value)
        return targets or None

    @property
    def is_local(self) -> bool:
        """Local signals stay inside the emitting service."""
        return self.target_services is None

    @property
    def payload(self) -> dict[str, Any]:
        """A copy of the payload; writes to it are never seen elsewhere."""
        return copy.deepcopy(self._payload)

    def payload_copy(self) -> dict[str, Any]:
        """Return a consumer-owned copy of the payload."""
        return self.payload

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["payload"] = to_jsonable_python(self._payload)
        return data


# ── Wire contract ──────────────────────────────────────────────────────

TICK_STARTED = "tick.started"
RUNNER_NEW_TELEMETRY = "runner.new_telemetry"
HEALTH_CHECK = "health.check"
HEALTH_ALERT_ESCALATION = "health.alert_escalation"
RUNNER_HEALTH_CHECK_TRIGGERED = "runner.health_check_triggered"
RUNNER_PREDICTIVE_MAINTENANCE_TRIGGERED = "runner.predictive_maintenance_triggered"
RUNNER_ALERT_ESCALATION_TRIGGERED = "runner.alert_escalation_triggered"
TELEMETRY_INSERTED = "global.telemetry.inserted"
TELEMETRY_DATA_VALIDATED = "telemetry.data_validated"
TELEMETRY_OUTLIER_DETECTED = "telemetry.outlier_detected"
TELEMETRY_RECHECK_INITIATED = "telemetry.recheck_initiated"
ANOMALY_TEMPERATURE_SPIKE = "anomaly.temperature_spike"
ANOMALY_HUMIDITY_SPIKE = "anomaly.humidity_spike"
ANOMALY_DETECTED = "global.telemetry.anomaly_detected"
PREDICTION_STARTED = "predictor.prediction_started"
MAINTENANCE_NEEDED = "predictor.maintenance_needed"
PREDICTION_READY = "predictor.prediction_ready"
ALERT_CREATED = "alert.created"
