"""
Routine Executor — walks a task graph for one run.

Walk rules:
1. Sequential tasks run strictly in order, each on the previous Context
2. A fan-out clones the Context once per branch; branches run as their own
   asyncio tasks and never see each other's mutations
3. A branch ends at a leaf or at a unique task whose join it did not fire
4. A handler error aborts the run (textual reason on the RunRecord) but
   leaves sibling branches that are already scheduled running
"""

import asyncio
from collections import OrderedDict
from typing import TYPE_CHECKING, Optional

import structlog

from devicepulse.exceptions import TelemetryValidationError
from devicepulse.logging_config import bind_run_context
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.join import JoinCoordinator, JoinStatus
from devicepulse.orchestration.runs import RunRecord, RunStatus, StateStep
from devicepulse.orchestration.states import StateMachine
from devicepulse.orchestration.task import Emitter, Routine, Task
from devicepulse.signals.bus import SignalBus
from devicepulse.signals.models import Signal

if TYPE_CHECKING:
    from devicepulse.orchestration.deputy import DeputyDispatcher

logger = structlog.get_logger(__name__)


class Executor:
    """Runs routines for one service."""

    def __init__(
        self,
        service_name: str,
        bus: SignalBus,
        joins: JoinCoordinator,
        deputies: Optional["DeputyDispatcher"] = None,
        state_machine: Optional[StateMachine] = None,
        history_size: int = 1000,
    ):
        self.service_name = service_name
        self._bus = bus
        self._joins = joins
        self._deputies = deputies
        self._states = state_machine
        self._history_size = history_size
        self._runs: OrderedDict[str, RunRecord] = OrderedDict()

    # ── Public API ─────────────────────────────────────────────────────

    async def run_signal(self, routine: Routine, signal: Signal) -> RunRecord:
        """Bus entry point: one run per delivered signal."""
        ctx = Context(signal.payload_copy())
        return await self.run_routine(routine, ctx, trigger=signal.name)

    async def run_routine(
        self,
        routine: Routine,
        ctx: Context,
        trigger: str = "direct",
        initial_state: Optional[str] = None,
    ) -> RunRecord:
        """
        Execute a routine to completion and return its RunRecord.

        The run executes in its own asyncio task so that its log context
        never leaks into the caller's.
        """
        run = RunRecord(routine=routine.name, service=self.service_name, trigger=trigger)
        self._remember(run)
        return await asyncio.create_task(
            self._execute_run(run, routine, ctx, initial_state),
            name=f"run:{routine.name}:{run.run_id}",
        )

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def runs(self, routine: Optional[str] = None) -> list[RunRecord]:
        """Recent runs, oldest first."""
        return [r for r in self._runs.values() if routine is None or r.routine == routine]

    # ── Walk ───────────────────────────────────────────────────────────

    async def _execute_run(
        self,
        run: RunRecord,
        routine: Routine,
        ctx: Context,
        initial_state: Optional[str],
    ) -> RunRecord:
        bind_run_context(run.run_id, routine.name, self.service_name)
        logger.info("run_started", trigger=run.trigger)

        start_state = initial_state
        if start_state is None and self._states is not None:
            start_state = self._states.initial

        if len(routine.roots) == 1:
            await self._walk(routine.roots[0], ctx, run, source="", state=start_state)
        else:
            await asyncio.gather(*(
                self._spawn(self._walk(root, ctx.clone(), run, source="", state=start_state))
                for root in routine.roots
            ))

        if run.status == RunStatus.RUNNING:
            if self._states is not None and run.states:
                run.states.append(StateStep(task="", state=self._states.initial))
        run.finish()

        log = logger.info if run.status == RunStatus.COMPLETED else logger.warning
        log(
            "run_finished",
            status=run.status.value,
            error=run.error,
            duration_ms=run.duration_ms(),
        )
        return run

    async def _walk(
        self,
        task: Task,
        ctx: Context,
        run: RunRecord,
        source: str,
        state: Optional[str],
    ) -> None:
        try:
            while True:
                if task.is_unique:
                    joined = await self._joins.arrive(task, run.run_id, ctx, source=source)
                    if joined.status == JoinStatus.TIMED_OUT:
                        run.stall(
                            f"{task.name}: join timed out with "
                            f"{joined.received}/{joined.expected} branches"
                        )
                    if not joined.proceed:
                        return
                    ctx = joined.context
                    state = self._enter_state(run, task, state, task.join_state)

                state = self._enter_state(run, task, state, task.state)
                ctx = await self._execute_task(task, ctx, run, state)

                if not task.next:
                    run.results.append(ctx)
                    return

                if len(task.next) == 1:
                    source = task.name
                    task = task.next[0]
                    continue

                await asyncio.gather(*(
                    self._spawn(self._walk(child, ctx.clone(), run, source=task.name, state=state))
                    for child in task.next
                ))
                return

        except TelemetryValidationError as e:
            run.reject(str(e))
            if self._states is not None:
                run.states.append(StateStep(task=task.name, state=self._states.rejected))
            logger.warning("run_rejected", task=task.name, reason=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            run.fail(f"{task.name}: {e}")
            logger.error("task_failed", task=task.name, error=str(e), error_type=type(e).__name__)

    async def _execute_task(
        self,
        task: Task,
        ctx: Context,
        run: RunRecord,
        state: Optional[str],
    ) -> Context:
        if task.requires is not None:
            ctx.validate(task.requires, task.name)

        if task.is_deputy:
            if self._deputies is None:
                raise RuntimeError(f"No deputy dispatcher for {task.name}")
            return await self._deputies.dispatch(
                task.request, ctx, caller=self.service_name, initial_state=state,
            )

        emit = Emitter()
        result = await task.execute(ctx, emit)
        emitted = emit.flush(self._bus, causation_run_id=run.run_id)
        logger.debug("task_completed", task=task.name, emitted=emitted)
        return result

    def _enter_state(
        self,
        run: RunRecord,
        task: Task,
        current: Optional[str],
        target: Optional[str],
    ) -> Optional[str]:
        if target is None:
            return current
        if self._states is not None and current is not None and not self._states.allows(current, target):
            logger.warning("unexpected_state_transition", task=task.name, current=current, target=target)
        run.states.append(StateStep(task=task.name, state=target))
        return target

    def _spawn(self, coro) -> asyncio.Task:
        return asyncio.create_task(coro)

    def _remember(self, run: RunRecord) -> None:
        self._runs[run.run_id] = run
        while len(self._runs) > self._history_size:
            self._runs.popitem(last=False)
