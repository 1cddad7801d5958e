"""
DevicePulse exceptions.

Failures are reported as textual reasons on the aborted run; there are no
error codes. Every error raised by the package derives from DevicePulseError.
"""

from typing import Optional


class DevicePulseError(Exception):
    """Base exception for DevicePulse."""


class TelemetryValidationError(DevicePulseError):
    """Required field missing or of the wrong type. Terminal for the run."""

    def __init__(self, message: str, device_id: Optional[str] = None):
        super().__init__(message)
        self.device_id = device_id


class ContextSchemaError(TelemetryValidationError):
    """Context failed the stage schema declared by a task."""

    def __init__(self, task_name: str, errors: list[str]):
        super().__init__(f"Context rejected by {task_name}: {'; '.join(errors)}")
        self.task_name = task_name
        self.errors = errors


class DeputyError(DevicePulseError):
    """A delegated task failed or could not be reached on the peer service."""

    def __init__(self, target_service: str, task_name: str, reason: str):
        super().__init__(f"Deputy {task_name}@{target_service} failed: {reason}")
        self.target_service = target_service
        self.task_name = task_name
        self.reason = reason


class RoutineDefinitionError(DevicePulseError):
    """Task graph is malformed (cycle, orphan unique task, duplicate name)."""


class UnknownTableError(DevicePulseError):
    """Database binding was asked for a table it does not know."""
