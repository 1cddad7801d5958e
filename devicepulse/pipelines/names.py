"""Service names used for targeted signals and deputy calls."""

RUNNER = "runner"
TELEMETRY_COLLECTOR = "telemetry-collector"
ANOMALY_DETECTOR = "anomaly-detector"
PREDICTOR = "predictor"
ALERT_SERVICE = "alert-service"

ALL_SERVICES = (RUNNER, TELEMETRY_COLLECTOR, ANOMALY_DETECTOR, PREDICTOR, ALERT_SERVICE)
