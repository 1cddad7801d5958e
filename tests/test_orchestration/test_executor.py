"""
Tests for the routine Executor.

Covers:
- Sequential ordering and fan-out branch isolation
- Fan-in firing exactly once per run
- Failure, rejection and stall outcomes
- State trail recording and run history
"""

import asyncio

import pytest
from pydantic import BaseModel

from devicepulse.exceptions import TelemetryValidationError
from devicepulse.orchestration.join import JoinCoordinator
from devicepulse.orchestration.runs import RunStatus
from devicepulse.orchestration.service import Service
from devicepulse.orchestration.states import StateMachine
from devicepulse.orchestration.task import Routine, Task, UniqueTask

TRACE = StateMachine(
    initial="idle",
    rejected="rejected",
    transitions={
        "idle": frozenset({"first"}),
        "first": frozenset({"second", "left", "right"}),
        "left": frozenset({"joining"}),
        "right": frozenset({"joining"}),
        "joining": frozenset({"merged"}),
    },
)


def _append(step: str):
    def handler(ctx, emit):
        ctx.setdefault("trail", []).append(step)
        return ctx
    return handler


def _diamond(left_handler=None, right_handler=None, merge_handler=None, expected=None):
    root = Task("Root", _append("root"), state="first")
    left = Task("Left", left_handler or _append("left"), state="left")
    right = Task("Right", right_handler or _append("right"), state="right")
    merge = UniqueTask(
        "Merge",
        merge_handler,
        expected_branches=expected,
        join_state="joining",
        state="merged",
    )
    root.then(left, right)
    left.then(merge)
    right.then(merge)
    return Routine("Diamond", [root])


def _service(directory, timeout=0.2, policy="discard", history_size=1000) -> Service:
    return Service(
        "worker",
        directory,
        joins=JoinCoordinator(timeout_seconds=timeout, timeout_policy=policy),
        state_machine=TRACE,
        history_size=history_size,
    )


# ── Walk ──────────────────────────────────────────────────────────────


class TestWalk:
    @pytest.mark.asyncio
    async def test_sequential_tasks_run_in_order(self, directory):
        service = _service(directory)
        a, b, c = Task("A", _append("a")), Task("B", _append("b")), Task("C", _append("c"))
        a.then(b.then(c))
        service.add_routine(Routine("Chain", [a]))

        run = await service.run("Chain", {})

        assert run.status == RunStatus.COMPLETED
        assert run.output()["trail"] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_fan_out_branches_are_isolated(self, directory):
        seen = {}

        def left(ctx, emit):
            ctx["owner"] = "left"
            ctx["trail"].append("left")

        async def right(ctx, emit):
            await asyncio.sleep(0.01)
            seen["right_owner"] = ctx.get("owner")
            seen["right_trail"] = list(ctx["trail"])

        def merge(ctx, emit):
            seen["joined"] = len(ctx.joined)
            seen["owner"] = ctx["owner"]

        service = _service(directory)
        service.add_routine(_diamond(left, right, merge))
        run = await service.run("Diamond", {})

        assert run.status == RunStatus.COMPLETED
        assert seen["right_owner"] is None
        assert seen["right_trail"] == ["root"]
        assert seen["joined"] == 2
        assert seen["owner"] == "left"

    @pytest.mark.asyncio
    async def test_unique_task_fires_once(self, directory):
        calls = []
        service = _service(directory)
        service.add_routine(_diamond(merge_handler=lambda ctx, emit: calls.append(1)))

        run = await service.run("Diamond", {})

        assert calls == [1]
        assert len(run.results) == 1

    @pytest.mark.asyncio
    async def test_concurrent_runs_join_separately(self, directory):
        calls = []
        service = _service(directory)
        service.add_routine(_diamond(merge_handler=lambda ctx, emit: calls.append(ctx["n"])))

        runs = await asyncio.gather(*(service.run("Diamond", {"n": n}) for n in range(3)))

        assert all(r.status == RunStatus.COMPLETED for r in runs)
        assert sorted(calls) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_emissions_carry_run_id(self, directory):
        service = _service(directory)
        service.add_routine(Routine("Emit", [Task("Emit", lambda ctx, emit: emit("done", {"x": 1}))]))

        run = await service.run("Emit", {})

        [signal] = service.bus.history("done")
        assert signal.causation_run_id == run.run_id


# ── Outcomes ──────────────────────────────────────────────────────────


class _NeedsDevice(BaseModel):
    device_id: str


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_handler_error_fails_run_and_sibling_still_runs(self, directory):
        ran = []

        def left(ctx, emit):
            raise ValueError("bad sensor")

        def right(ctx, emit):
            ran.append("right")

        service = _service(directory, timeout=0.1)
        service.add_routine(_diamond(left, right))
        run = await service.run("Diamond", {})

        assert run.status == RunStatus.FAILED
        assert run.error == "Left: bad sensor"
        assert ran == ["right"]
        assert run.is_finished

    @pytest.mark.asyncio
    async def test_validation_failure_rejects_without_emitting(self, directory):
        def check(ctx, emit):
            emit("validated", {})
            raise TelemetryValidationError("temperature missing", device_id="device-1")

        service = _service(directory)
        service.add_routine(Routine("Check", [Task("Check", check, state="first")]))
        run = await service.run("Check", {})

        assert run.status == RunStatus.REJECTED
        assert run.error == "temperature missing"
        assert run.state_trail == ["first", "rejected"]
        assert service.bus.history("validated") == []

    @pytest.mark.asyncio
    async def test_requires_schema_rejects_before_handler(self, directory):
        called = []
        service = _service(directory)
        task = Task("Needs", lambda ctx, emit: called.append(1), requires=_NeedsDevice)
        service.add_routine(Routine("Needs", [task]))

        run = await service.run("Needs", {"readings": {}})

        assert run.status == RunStatus.REJECTED
        assert "device_id" in run.error
        assert called == []

    @pytest.mark.asyncio
    async def test_join_timeout_discard_stalls(self, directory):
        merged = []
        service = _service(directory, timeout=0.05, policy="discard")
        service.add_routine(_diamond(merge_handler=lambda ctx, emit: merged.append(1), expected=3))

        run = await service.run("Diamond", {})

        assert run.status == RunStatus.STALLED
        assert "2/3" in run.error
        assert merged == []

    @pytest.mark.asyncio
    async def test_join_timeout_partial_completes(self, directory):
        merged = []
        service = _service(directory, timeout=0.05, policy="partial")
        service.add_routine(
            _diamond(merge_handler=lambda ctx, emit: merged.append(len(ctx.joined)), expected=3)
        )

        run = await service.run("Diamond", {})

        assert run.status == RunStatus.COMPLETED
        assert merged == [2]


# ── States & History ──────────────────────────────────────────────────


class TestStatesAndHistory:
    @pytest.mark.asyncio
    async def test_state_trail_returns_to_initial(self, directory):
        service = _service(directory)
        first = Task("First", state="first")
        first.then(Task("Second", state="second"))
        service.add_routine(Routine("Trail", [first]))

        run = await service.run("Trail", {})

        assert run.state_trail == ["first", "second", "idle"]

    @pytest.mark.asyncio
    async def test_diamond_trail_records_join(self, directory):
        service = _service(directory)
        service.add_routine(_diamond())

        run = await service.run("Diamond", {})
        trail = run.state_trail

        assert trail[0] == "first"
        assert sorted(trail[1:3]) == ["left", "right"]
        assert trail[3:] == ["joining", "merged", "idle"]

    @pytest.mark.asyncio
    async def test_runs_are_queryable(self, directory):
        service = _service(directory, history_size=2)
        service.add_routine(Routine("Noop", [Task("Noop")]))

        first = await service.run("Noop", {})
        second = await service.run("Noop", {})
        third = await service.run("Noop", {})

        assert service.executor.get_run(first.run_id) is None
        assert service.executor.get_run(third.run_id) is third
        assert [r.run_id for r in service.executor.runs("Noop")] == [second.run_id, third.run_id]
        assert third.duration_ms() is not None

    @pytest.mark.asyncio
    async def test_unknown_routine_raises(self, directory):
        service = _service(directory)
        with pytest.raises(KeyError):
            await service.run("Missing", {})
