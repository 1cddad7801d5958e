"""
DevicePulse SQLAlchemy models.

Four tables: device, telemetry, health_metric, alert.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from devicepulse.db.compat import GUID, JSONType, UTCDateTime
from devicepulse.db.engine import Base


class Device(Base):
    """IoT devices in the fleet."""

    __tablename__ = "device"
    __table_args__ = (Index("ix_device_type", "type"),)

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[str] = mapped_column(String(255), nullable=False)
    last_seen: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())


class Telemetry(Base):
    """Raw telemetry samples. Append-only."""

    __tablename__ = "telemetry"
    __table_args__ = (
        Index("ix_telemetry_device_timestamp", "device_id", "timestamp"),
        Index("ix_telemetry_timestamp", "timestamp"),
    )

    uuid: Mapped[str] = mapped_column(GUID(), primary_key=True)
    device_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("device.name", ondelete="CASCADE"), nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    temperature: Mapped[Optional[float]] = mapped_column(Float)
    humidity: Mapped[Optional[float]] = mapped_column(Float)
    battery: Mapped[Optional[float]] = mapped_column(Float)
    raw_json: Mapped[Optional[dict]] = mapped_column(JSONType())


class HealthMetric(Base):
    """Computed anomaly scores and failure predictions."""

    __tablename__ = "health_metric"
    __table_args__ = (
        Index("ix_health_metric_device_timestamp", "device_id", "timestamp"),
        Index("ix_health_metric_anomaly_score", "anomaly_score"),
    )

    uuid: Mapped[str] = mapped_column(GUID(), primary_key=True)
    device_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("device.name", ondelete="CASCADE"), nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    anomaly_score: Mapped[Optional[float]] = mapped_column(Float)
    failure_probability: Mapped[Optional[float]] = mapped_column(Float)
    predicted_eta: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())


class Alert(Base):
    """Generated alerts."""

    __tablename__ = "alert"
    __table_args__ = (
        Index("ix_alert_device_timestamp", "device_id", "timestamp"),
        Index("ix_alert_severity_resolved", "severity", "resolved"),
    )

    uuid: Mapped[str] = mapped_column(GUID(), primary_key=True)
    device_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("device.name", ondelete="CASCADE"), nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


MODELS: dict[str, type[Base]] = {
    "device": Device,
    "telemetry": Telemetry,
    "health_metric": HealthMetric,
    "alert": Alert,
}
