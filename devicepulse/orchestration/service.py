"""
Service hosting — one named unit with its own bus, executor and routines.

A ServiceDirectory is the explicit registry shared by co-hosted services.
It owns the SignalNetwork (targeted signal routing) and the DeputyDispatcher
(bounded delegation), and is passed by reference to every Service.
"""

from typing import Any, Iterable, Optional, Union

import structlog

from devicepulse.exceptions import DeputyError, RoutineDefinitionError
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.deputy import DeputyDispatcher
from devicepulse.orchestration.executor import Executor
from devicepulse.orchestration.join import JoinCoordinator
from devicepulse.orchestration.runs import RunRecord
from devicepulse.orchestration.states import StateMachine
from devicepulse.orchestration.task import Routine, Task
from devicepulse.signals.bus import SignalBus, SignalNetwork
from devicepulse.signals.models import Signal

logger = structlog.get_logger(__name__)


class Service:
    """A hosted service: routines bound to signals on a private bus."""

    def __init__(
        self,
        name: str,
        directory: "ServiceDirectory",
        joins: Optional[JoinCoordinator] = None,
        state_machine: Optional[StateMachine] = None,
        history_size: int = 1000,
        signal_history_size: int = 1000,
    ):
        self.name = name
        self.directory = directory
        self.joins = joins or JoinCoordinator()
        self.bus = SignalBus(name, network=directory.network, history_size=signal_history_size)
        self.executor = Executor(
            name,
            self.bus,
            self.joins,
            deputies=directory.deputies,
            state_machine=state_machine,
            history_size=history_size,
        )
        self.bus.attach_runner(self._run_from_signal)
        self._routines: dict[str, Routine] = {}
        self._entries: dict[str, Routine] = {}
        directory.register(self)

    def __repr__(self) -> str:
        return f"Service({self.name!r})"

    # ── Wiring ──────────────────────────────────────────────────────────

    def add_routine(self, routine: Routine, expose: bool = False) -> Routine:
        """Subscribe a routine to its trigger signals."""
        if routine.name in self._routines:
            raise RoutineDefinitionError(
                f"Service '{self.name}' already has a routine named '{routine.name}'"
            )
        self._routines[routine.name] = routine
        for signal_name in routine.trigger_signals:
            self.bus.subscribe(signal_name, routine)
        if expose:
            self.expose(routine)
        return routine

    def expose(self, target: Union[Routine, Task], name: Optional[str] = None) -> None:
        """Register a deputy entry point. A bare task is wrapped in a routine."""
        routine = target if isinstance(target, Routine) else Routine(target.name, [target])
        entry = name or routine.name
        self._entries[entry] = routine
        logger.debug("deputy_entry_exposed", service=self.name, entry=entry)

    @property
    def routines(self) -> dict[str, Routine]:
        return dict(self._routines)

    @property
    def entries(self) -> list[str]:
        return sorted(self._entries)

    # ── Execution ───────────────────────────────────────────────────────

    def emit(
        self,
        name: str,
        payload: Optional[dict[str, Any]] = None,
        target_services: Optional[Iterable[str]] = None,
    ) -> Signal:
        return self.bus.publish(name, payload, target_services=target_services)

    async def handle_deputy(
        self,
        task_name: str,
        ctx: Context,
        caller: Optional[str] = None,
        initial_state: Optional[str] = None,
    ) -> RunRecord:
        """Run a deputy entry point on behalf of a caller."""
        routine = self._entries.get(task_name)
        if routine is None:
            raise DeputyError(self.name, task_name, "unknown entry point")
        return await self.executor.run_routine(
            routine,
            ctx,
            trigger=f"deputy:{caller or 'unknown'}",
            initial_state=initial_state,
        )

    async def run(self, routine_name: str, payload: Optional[dict[str, Any]] = None) -> RunRecord:
        """Run a routine directly, bypassing the bus."""
        routine = self._routines.get(routine_name) or self._entries.get(routine_name)
        if routine is None:
            raise KeyError(f"Service '{self.name}' has no routine '{routine_name}'")
        return await self.executor.run_routine(routine, Context(payload or {}))

    async def _run_from_signal(self, routine: Routine, signal: Signal) -> RunRecord:
        return await self.executor.run_signal(routine, signal)

    async def start(self) -> None:
        await self.bus.start()

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        await self.bus.stop(grace_seconds)


class ServiceDirectory:
    """Registry of co-hosted services."""

    def __init__(self):
        self.network = SignalNetwork()
        self.deputies = DeputyDispatcher(self)
        self._services: dict[str, Service] = {}

    def register(self, service: Service) -> None:
        if service.name in self._services and self._services[service.name] is not service:
            raise ValueError(f"Service '{service.name}' is already registered")
        self._services[service.name] = service

    def get(self, name: str) -> Optional[Service]:
        return self._services.get(name)

    def __getitem__(self, name: str) -> Service:
        return self._services[name]

    def __contains__(self, name: str) -> bool:
        return name in self._services

    @property
    def names(self) -> list[str]:
        return sorted(self._services)

    def services(self) -> list[Service]:
        return list(self._services.values())

    async def start_all(self) -> None:
        for service in self._services.values():
            await service.start()
        logger.info("services_started", services=self.names)

    async def stop_all(self, grace_seconds: Optional[float] = None) -> None:
        for service in self._services.values():
            await service.stop(grace_seconds)
        logger.info("services_stopped", services=self.names)

    async def drain(self) -> None:
        """Wait until every bus is idle."""
        await self.network.drain()
