"""
DevicePulse — reactive IoT health monitoring.

Architecture:
    devicepulse/
    ├── orchestration/   # Tasks, routines, executor, fan-in joins, deputy calls
    ├── signals/         # Signal model and per-service signal bus
    ├── analyzers/       # Statistical anomaly scoring
    ├── engine/          # Failure prediction
    ├── db/              # Database binding (in-memory + SQLAlchemy)
    ├── services/        # Weather client, traffic simulator, alert cooldown
    ├── pipelines/       # Routines of each service (runner, collector, ...)
    └── schemas/         # Pydantic stage schemas and result models

Data Flow:
    Simulator tick → runner → telemetry insert → telemetry-collector
    → deputy CheckAnomaly@anomaly-detector → {temperature ‖ humidity} → merge
    → predictor → {history ‖ weather} → prediction → alert-service

Version: 0.1.0
"""

__version__ = "0.1.0"
