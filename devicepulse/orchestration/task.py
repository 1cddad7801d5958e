"""
Tasks and Routines — the building blocks of a task graph.

    validate.then(filter_outliers.then(deputy))        # sequential chain
    query.then(check_temperature, check_humidity)      # fan-out
    check_temperature.then(merge); check_humidity.then(merge)   # fan-in

`then()` returns the task it was called on, so chains nest the way the graph
reads. Edges into a UniqueTask are counted to derive its expected branch
count.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping, Optional, Union

from pydantic import BaseModel

from devicepulse.exceptions import RoutineDefinitionError
from devicepulse.orchestration.context import Context

HandlerResult = Union[Context, Mapping[str, Any], None]
Handler = Callable[[Context, "Emitter"], Union[HandlerResult, Awaitable[HandlerResult]]]


@dataclass(frozen=True)
class Emission:
    name: str
    payload: dict[str, Any]
    target_services: Optional[tuple[str, ...]] = None


class Emitter:
    """
    Collects the signals a handler emits.

    Emissions are published only after the handler returns, so a task that
    raises emits nothing.
    """

    def __init__(self):
        self._emissions: list[Emission] = []

    def __call__(
        self,
        name: str,
        payload: Optional[Mapping[str, Any]] = None,
        target_services: Optional[Iterable[str]] = None,
    ) -> None:
        self._emissions.append(
            Emission(
                name=name,
                payload=dict(payload or {}),
                target_services=tuple(target_services) if target_services else None,
            )
        )

    @property
    def emissions(self) -> list[Emission]:
        return list(self._emissions)

    def flush(self, bus, causation_run_id: Optional[str] = None) -> int:
        """Publish buffered emissions on the given bus."""
        for emission in self._emissions:
            bus.publish(
                emission.name,
                emission.payload,
                target_services=emission.target_services,
                causation_run_id=causation_run_id,
            )
        count = len(self._emissions)
        self._emissions.clear()
        return count


class Task:
    """A single computation step transforming a Context."""

    is_unique = False
    is_deputy = False

    def __init__(
        self,
        name: str,
        handler: Optional[Handler] = None,
        description: str = "",
        *,
        signals: Iterable[str] = (),
        requires: Optional[type[BaseModel]] = None,
        state: Optional[str] = None,
    ):
        self.name = name
        self.handler = handler
        self.description = description
        self.signals = tuple(signals)
        self.requires = requires
        self.state = state
        self.next: list[Task] = []
        self.predecessors: list[Task] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    def then(self, *tasks: "Task") -> "Task":
        """Add continuations. More than one continuation is a fan-out."""
        for task in tasks:
            if task is self:
                raise RoutineDefinitionError(f"Task '{self.name}' cannot follow itself")
            self.next.append(task)
            task.predecessors.append(self)
        return self

    def attach_signal(self, *names: str) -> "Task":
        """Declare signals this task may emit (documentation only)."""
        self.signals = self.signals + tuple(names)
        return self

    async def execute(self, ctx: Context, emit: Emitter) -> Context:
        if self.handler is None:
            return ctx
        result = self.handler(ctx, emit)
        if inspect.isawaitable(result):
            result = await result
        return _coerce_result(result, ctx)


class UniqueTask(Task):
    """
    Fan-in task: runs exactly once per run, after all expected branches arrive.

    `owners` declares which branch (by source task name) owns a merged field.
    """

    is_unique = True

    def __init__(
        self,
        name: str,
        handler: Optional[Handler] = None,
        description: str = "",
        *,
        expected_branches: Optional[int] = None,
        owners: Optional[Mapping[str, str]] = None,
        join_state: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(name, handler, description, **kwargs)
        self._expected_branches = expected_branches
        self.owners = dict(owners or {})
        self.join_state = join_state

    @property
    def expected_branches(self) -> int:
        if self._expected_branches is not None:
            return self._expected_branches
        return len(self.predecessors)


@dataclass(frozen=True)
class DeputyRequest:
    """Delegation of `task_name` to `target_service` under a concurrency cap."""

    target_service: str
    task_name: str
    concurrency_limit: int = 1


class DeputyTask(Task):
    """Task whose body runs on a peer service."""

    is_deputy = True

    def __init__(
        self,
        task_name: str,
        target_service: str,
        concurrency: int = 1,
        description: str = "",
        **kwargs,
    ):
        if concurrency < 1:
            raise RoutineDefinitionError("Deputy concurrency must be at least 1")
        super().__init__(
            f"{task_name}@{target_service}",
            None,
            description or f"Delegates {task_name} to {target_service}",
            **kwargs,
        )
        self.request = DeputyRequest(
            target_service=target_service,
            task_name=task_name,
            concurrency_limit=concurrency,
        )


class Routine:
    """Entry point bound to trigger signals; runs its task graph once per trigger."""

    def __init__(
        self,
        name: str,
        roots: Iterable[Task],
        description: str = "",
        trigger_signals: Iterable[str] = (),
    ):
        self.name = name
        self.roots = list(roots)
        self.description = description
        self.trigger_signals: list[str] = []
        if not self.roots:
            raise RoutineDefinitionError(f"Routine '{name}' has no root tasks")
        self._validate_graph()
        self.do_on(*trigger_signals)

    def __repr__(self) -> str:
        return f"Routine({self.name!r})"

    def do_on(self, *signal_names: str) -> "Routine":
        """Bind the routine to trigger signals."""
        for signal_name in signal_names:
            if signal_name not in self.trigger_signals:
                self.trigger_signals.append(signal_name)
        return self

    def tasks(self) -> Iterator[Task]:
        """Every task reachable from the roots, each once."""
        seen: set[int] = set()
        stack = list(reversed(self.roots))
        while stack:
            task = stack.pop()
            if id(task) in seen:
                continue
            seen.add(id(task))
            yield task
            stack.extend(reversed(task.next))

    def _validate_graph(self) -> None:
        visiting: set[int] = set()
        done: set[int] = set()

        def visit(task: Task, path: list[str]) -> None:
            if id(task) in done:
                return
            if id(task) in visiting:
                cycle = " -> ".join(path + [task.name])
                raise RoutineDefinitionError(f"Routine '{self.name}' has a cycle: {cycle}")
            visiting.add(id(task))
            for child in task.next:
                visit(child, path + [task.name])
            visiting.discard(id(task))
            done.add(id(task))

        for root in self.roots:
            visit(root, [])

        for task in self.tasks():
            if task.is_unique and task.expected_branches < 1:
                raise RoutineDefinitionError(
                    f"Unique task '{task.name}' in routine '{self.name}' has no incoming branches"
                )


def _coerce_result(result: HandlerResult, ctx: Context) -> Context:
    if result is None:
        return ctx
    if isinstance(result, Context):
        return result
    if isinstance(result, Mapping):
        return Context(result)
    raise TypeError(f"Task handler returned {type(result).__name__}, expected a mapping")
