"""
Join Coordinator — fan-in convergence for unique tasks.

One JoinState per (unique task, run id). Arrivals are appended under the
slot's own lock; the arrival that completes the count fires the join and
continues with the merged Context. Every other arrival hands its Context
over and ends its branch.

Timeout:
- The first arrival ("leader") waits for the join to fire
- With a timeout configured, the leader applies the partial-result policy
  when it expires: "discard" drops the join, "partial" fires it with the
  contexts that did arrive
- Without a timeout an incomplete join waits forever
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal, Optional

import structlog

from devicepulse.orchestration.context import Context, merge_contexts
from devicepulse.orchestration.task import UniqueTask

logger = structlog.get_logger(__name__)

TimeoutPolicy = Literal["discard", "partial"]


class JoinStatus(StrEnum):
    FIRED = "fired"             # This branch runs the unique task
    ABSORBED = "absorbed"       # Context handed over, another branch continues
    LATE = "late"               # Arrived after firing, discarded
    TIMED_OUT = "timed_out"     # Join dropped by the discard policy
    PARTIAL = "partial"         # Join fired by the partial policy


@dataclass(frozen=True)
class JoinResult:
    status: JoinStatus
    context: Optional[Context] = None
    received: int = 0
    expected: int = 0

    @property
    def proceed(self) -> bool:
        return self.context is not None


@dataclass
class JoinState:
    """Fan-in bookkeeping for one unique task in one run."""

    task_name: str
    run_id: str
    expected_branches: int
    received: list[tuple[str, Context]] = field(default_factory=list)
    fired: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    outcome: Optional[asyncio.Future] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def received_count(self) -> int:
        return len(self.received)


class JoinCoordinator:
    """Tracks JoinStates and fires each exactly once per run."""

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        timeout_policy: TimeoutPolicy = "discard",
        tombstone_size: int = 10_000,
    ):
        if timeout_policy not in ("discard", "partial"):
            raise ValueError(f"Unknown join timeout policy: {timeout_policy}")
        self.timeout_seconds = timeout_seconds
        self.timeout_policy = timeout_policy
        self._states: dict[tuple[str, str], JoinState] = {}
        self._fired: OrderedDict[tuple[str, str], datetime] = OrderedDict()
        self._tombstone_size = tombstone_size

    async def arrive(
        self,
        task: UniqueTask,
        run_id: str,
        ctx: Context,
        source: str,
    ) -> JoinResult:
        """Register one branch arrival at a unique task."""
        key = (task.name, run_id)

        if key in self._fired:
            return self._discard_late(task, run_id, source)

        state = self._states.get(key)
        if state is None:
            state = JoinState(
                task_name=task.name,
                run_id=run_id,
                expected_branches=task.expected_branches,
                outcome=asyncio.get_running_loop().create_future(),
            )
            self._states[key] = state

        async with state.lock:
            if state.fired:
                return self._discard_late(task, run_id, source)

            state.received.append((source, ctx))
            logger.debug(
                "join_arrival",
                task=task.name,
                source=source,
                received=state.received_count,
                expected=state.expected_branches,
            )

            if state.received_count >= state.expected_branches:
                merged = self._fire(key, state, task)
                if not state.outcome.done():
                    state.outcome.set_result(None)
                return JoinResult(
                    JoinStatus.FIRED, merged, state.received_count, state.expected_branches,
                )

            is_leader = state.received_count == 1

        if not is_leader:
            return JoinResult(JoinStatus.ABSORBED, None, state.received_count, state.expected_branches)

        return await self._await_outcome(key, state, task)

    def pending(self, run_id: Optional[str] = None) -> list[JoinState]:
        """Joins still waiting for branches."""
        return [
            s for s in self._states.values()
            if run_id is None or s.run_id == run_id
        ]

    def has_fired(self, task_name: str, run_id: str) -> bool:
        return (task_name, run_id) in self._fired

    async def _await_outcome(
        self,
        key: tuple[str, str],
        state: JoinState,
        task: UniqueTask,
    ) -> JoinResult:
        try:
            if self.timeout_seconds is None:
                await asyncio.shield(state.outcome)
            else:
                await asyncio.wait_for(asyncio.shield(state.outcome), self.timeout_seconds)
            return JoinResult(JoinStatus.ABSORBED, None, state.received_count, state.expected_branches)
        except asyncio.TimeoutError:
            pass

        async with state.lock:
            if state.fired:
                return JoinResult(
                    JoinStatus.ABSORBED, None, state.received_count, state.expected_branches,
                )

            if self.timeout_policy == "partial":
                merged = self._fire(key, state, task)
                logger.warning(
                    "join_timeout_partial_fire",
                    task=task.name,
                    received=state.received_count,
                    expected=state.expected_branches,
                    timeout_seconds=self.timeout_seconds,
                )
                result = JoinResult(
                    JoinStatus.PARTIAL, merged, state.received_count, state.expected_branches,
                )
            else:
                state.fired = True
                self._release(key)
                logger.warning(
                    "join_timeout_discarded",
                    task=task.name,
                    received=state.received_count,
                    expected=state.expected_branches,
                    timeout_seconds=self.timeout_seconds,
                )
                result = JoinResult(
                    JoinStatus.TIMED_OUT, None, state.received_count, state.expected_branches,
                )

            if not state.outcome.done():
                state.outcome.set_result(None)
            return result

    def _fire(self, key: tuple[str, str], state: JoinState, task: UniqueTask) -> Context:
        state.fired = True
        merged = merge_contexts(state.received, owners=task.owners)
        self._release(key)
        logger.info(
            "join_fired",
            task=task.name,
            branches=state.received_count,
            expected=state.expected_branches,
        )
        return merged

    def _release(self, key: tuple[str, str]) -> None:
        self._states.pop(key, None)
        self._fired[key] = datetime.now(timezone.utc)
        while len(self._fired) > self._tombstone_size:
            self._fired.popitem(last=False)

    def _discard_late(self, task: UniqueTask, run_id: str, source: str) -> JoinResult:
        logger.warning(
            "join_late_arrival_discarded",
            task=task.name,
            run_id=run_id,
            source=source,
        )
        return JoinResult(JoinStatus.LATE, None, 0, task.expected_branches)
