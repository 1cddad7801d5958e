"""Signal-driven task graph orchestration."""

from devicepulse.orchestration.context import Context, merge_contexts
from devicepulse.orchestration.deputy import DeputyDispatcher
from devicepulse.orchestration.executor import Executor
from devicepulse.orchestration.join import JoinCoordinator, JoinResult, JoinStatus
from devicepulse.orchestration.runs import RunRecord, RunStatus
from devicepulse.orchestration.service import Service, ServiceDirectory
from devicepulse.orchestration.states import StateMachine
from devicepulse.orchestration.task import (
    DeputyRequest,
    DeputyTask,
    Emitter,
    Routine,
    Task,
    UniqueTask,
)

__all__ = [
    "Context",
    "DeputyDispatcher",
    "DeputyRequest",
    "DeputyTask",
    "Emitter",
    "Executor",
    "JoinCoordinator",
    "JoinResult",
    "JoinStatus",
    "RunRecord",
    "RunStatus",
    "Routine",
    "Service",
    "ServiceDirectory",
    "StateMachine",
    "Task",
    "UniqueTask",
    "merge_contexts",
]
