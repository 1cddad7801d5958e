"""
Run records — the observable outcome of one routine execution.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from devicepulse.orchestration.context import Context, merge_contexts


class RunStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"           # Handler or deputy error
    REJECTED = "rejected"       # Validation failure, terminal
    STALLED = "stalled"         # A join timed out and was discarded


@dataclass
class StateStep:
    task: str
    state: str


@dataclass
class RunRecord:
    """One routine run. Failures carry a textual reason, nothing more."""

    routine: str
    service: str
    trigger: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.RUNNING
    error: Optional[str] = None
    states: list[StateStep] = field(default_factory=list)
    results: list[Context] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    @property
    def state_trail(self) -> list[str]:
        return [step.state for step in self.states]

    def reject(self, reason: str) -> None:
        if self.status in (RunStatus.RUNNING, RunStatus.STALLED, RunStatus.FAILED):
            self.status = RunStatus.REJECTED
            self.error = reason

    def fail(self, reason: str) -> None:
        if self.status in (RunStatus.RUNNING, RunStatus.STALLED):
            self.status = RunStatus.FAILED
            self.error = reason

    def stall(self, reason: str) -> None:
        if self.status == RunStatus.RUNNING:
            self.status = RunStatus.STALLED
            self.error = reason

    def finish(self) -> None:
        if self.status == RunStatus.RUNNING:
            self.status = RunStatus.COMPLETED
        self.finished_at = datetime.now(timezone.utc)

    def output(self) -> Optional[Context]:
        """Final context of the run; several leaves are merged."""
        if not self.results:
            return None
        if len(self.results) == 1:
            return self.results[0]
        return merge_contexts([(f"{i:04d}", ctx) for i, ctx in enumerate(self.results)])

    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at).total_seconds() * 1000, 2)
