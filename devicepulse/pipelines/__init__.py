"""
DevicePulse service pipelines.

Components:
- runner: mock events and flow triggers
- telemetry_collector: validation, outlier filtering, delegated anomaly check
- anomaly_detector: per-metric scoring with fan-in merge
- predictor: failure prediction from anomaly history and weather
- alert_service: alert records with cooldown
- states: monitoring cycle state machine
"""
