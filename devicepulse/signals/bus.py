"""
Signal Bus — per-service publish/subscribe transport.

Each service owns one SignalBus. Signals without target services are
delivered only to the emitting bus; targeted signals are routed through the
SignalNetwork into the inbox of every named service.

Delivery:
- publish() is fire-and-forget: it enqueues and returns immediately
- one dispatcher task per bus drains the inbox in FIFO order
- every subscribed routine is started as its own run task
- run errors are logged and never stop the dispatcher; there is no retry
"""

import asyncio
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog

from devicepulse.signals.models import Signal

logger = structlog.get_logger(__name__)

RunStarter = Callable[[Any, Signal], Awaitable[Any]]


@dataclass
class Subscription:
    """A routine bound to one signal name."""

    signal_name: str
    routine: Any
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SignalNetwork:
    """
    Routes targeted signals between the buses of co-hosted services.

    Built explicitly by the hosting process and handed to every bus.
    """

    def __init__(self):
        self._buses: dict[str, "SignalBus"] = {}

    def register(self, bus: "SignalBus") -> None:
        if bus.service_name in self._buses and self._buses[bus.service_name] is not bus:
            raise ValueError(f"Service '{bus.service_name}' already has a bus")
        self._buses[bus.service_name] = bus

    def get(self, service_name: str) -> Optional["SignalBus"]:
        return self._buses.get(service_name)

    @property
    def service_names(self) -> list[str]:
        return sorted(self._buses)

    def buses(self) -> list["SignalBus"]:
        return list(self._buses.values())

    async def drain(self) -> None:
        """Wait until no running bus has queued signals or runs in flight."""
        while True:
            busy = [bus for bus in self._buses.values() if bus.is_running and bus.is_busy]
            if not busy:
                return
            for bus in busy:
                await bus.drain()


class SignalBus:
    """
    In-process signal bus for one service.

    Supports:
    - Local and targeted (cross-service) delivery
    - FIFO dispatch per bus
    - Bounded history of published signals
    - Graceful stop with cancellation of stragglers
    """

    def __init__(
        self,
        service_name: str,
        network: Optional[SignalNetwork] = None,
        history_size: int = 1000,
    ):
        self.service_name = service_name
        self._network = network
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._inbox: asyncio.Queue[Signal] = asyncio.Queue()
        self._history: deque[Signal] = deque(maxlen=history_size)
        self._inflight: set[asyncio.Task] = set()
        self._unfinished = 0
        self._dispatcher: Optional[asyncio.Task] = None
        self._runner: Optional[RunStarter] = None
        self._running = False

        if network is not None:
            network.register(self)

    # ── Wiring ──────────────────────────────────────────────────────────

    def attach_runner(self, runner: RunStarter) -> None:
        """Set the coroutine used to run a routine for a delivered signal."""
        self._runner = runner

    def subscribe(self, signal_name: str, routine: Any) -> str:
        """Register a routine to run on every matching signal."""
        subscription = Subscription(signal_name=signal_name, routine=routine)
        self._subscriptions[signal_name].append(subscription)
        logger.debug(
            "routine_subscribed",
            service=self.service_name,
            signal=signal_name,
            routine=getattr(routine, "name", repr(routine)),
        )
        return subscription.subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        for name, subscriptions in self._subscriptions.items():
            for subscription in subscriptions:
                if subscription.subscription_id == subscription_id:
                    subscriptions.remove(subscription)
                    logger.debug("routine_unsubscribed", service=self.service_name, signal=name)
                    return True
        return False

    def subscriptions(self, signal_name: str) -> list[Subscription]:
        return list(self._subscriptions.get(signal_name, []))

    # ── Publishing ──────────────────────────────────────────────────────

    def publish(
        self,
        name: str,
        payload: Optional[dict[str, Any]] = None,
        target_services: Optional[Iterable[str]] = None,
        causation_run_id: Optional[str] = None,
    ) -> Signal:
        """Publish a signal. Never blocks and never raises on routing misses."""
        signal = Signal(
            name=name,
            payload=payload or {},
            target_services=target_services,
            source_service=self.service_name,
            causation_run_id=causation_run_id,
        )
        self._history.append(signal)

        logger.info(
            "signal_published",
            signal=name,
            signal_id=signal.signal_id,
            source=self.service_name,
            targets=sorted(signal.target_services) if signal.target_services else None,
        )

        if signal.is_local:
            self.deliver(signal)
            return signal

        for target in sorted(signal.target_services):
            if target == self.service_name:
                self.deliver(signal)
                continue
            bus = self._network.get(target) if self._network is not None else None
            if bus is None:
                logger.warning(
                    "signal_target_unknown",
                    signal=name,
                    signal_id=signal.signal_id,
                    target=target,
                )
                continue
            bus.deliver(signal)

        return signal

    def deliver(self, signal: Signal) -> None:
        """Enqueue a signal into this bus's inbox."""
        self._unfinished += 1
        self._inbox.put_nowait(signal)

    def history(self, name: Optional[str] = None) -> list[Signal]:
        """Recently published signals, oldest first."""
        if name is None:
            return list(self._history)
        return [s for s in self._history if s.name == name]

    # ── Lifecycle ───────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_busy(self) -> bool:
        return self._unfinished > 0 or bool(self._inflight)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def start(self) -> None:
        """Start the dispatcher task."""
        if self._running:
            return
        if self._runner is None:
            raise RuntimeError(f"Bus '{self.service_name}' has no runner attached")
        self._running = True
        self._dispatcher = asyncio.create_task(
            self._dispatch_loop(), name=f"signal-bus:{self.service_name}",
        )
        logger.info("signal_bus_started", service=self.service_name)

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop dispatching, wait for in-flight runs, cancel the rest."""
        if not self._running:
            return
        self._running = False

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

        pending = set(self._inflight)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning(
                    "signal_bus_runs_cancelled",
                    service=self.service_name,
                    cancelled=len(still_running),
                )

        logger.info("signal_bus_stopped", service=self.service_name)

    async def drain(self) -> None:
        """Wait until the inbox is empty and no run is in flight."""
        if not self._running and self._unfinished:
            logger.warning(
                "signal_bus_drain_while_stopped",
                service=self.service_name,
                queued=self._unfinished,
            )
            return
        while self.is_busy:
            if self._unfinished:
                await self._inbox.join()
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ── Dispatch ────────────────────────────────────────────────────────

    async def _dispatch_loop(self) -> None:
        while True:
            signal = await self._inbox.get()
            try:
                self._start_runs(signal)
            except Exception as e:
                logger.error(
                    "signal_dispatch_error",
                    service=self.service_name,
                    signal=signal.name,
                    signal_id=signal.signal_id,
                    error=str(e),
                )
            finally:
                self._unfinished -= 1
                self._inbox.task_done()

    def _start_runs(self, signal: Signal) -> None:
        subscriptions = self._subscriptions.get(signal.name, [])
        if not subscriptions:
            logger.debug("signal_unhandled", service=self.service_name, signal=signal.name)
            return

        for subscription in list(subscriptions):
            task = asyncio.create_task(self._run_guarded(subscription, signal))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _run_guarded(self, subscription: Subscription, signal: Signal) -> None:
        try:
            await self._runner(subscription.routine, signal)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "signal_handler_error",
                service=self.service_name,
                signal=signal.name,
                signal_id=signal.signal_id,
                routine=getattr(subscription.routine, "name", None),
                error=str(e),
            )
