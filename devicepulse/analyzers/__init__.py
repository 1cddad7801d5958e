"""Statistical analyzers for device telemetry."""
