"""
Tests for the Signal model and SignalBus.

Covers:
- Payload immutability after publish
- Local vs targeted delivery
- FIFO dispatch per bus
- Handler errors never stop the bus
- Stop, drain, history and unsubscribe
"""

import asyncio

import pytest
from pydantic import ValidationError

from devicepulse.signals.bus import SignalBus, SignalNetwork
from devicepulse.signals.models import Signal


class Recorder:
    """Fake runner that records (bus, routine, signal) deliveries."""

    def __init__(self, service: str, log: list, fail_on: str = None, delay: float = 0.0):
        self.service = service
        self.log = log
        self.fail_on = fail_on
        self.delay = delay

    async def __call__(self, routine, signal: Signal):
        if self.delay:
            await asyncio.sleep(self.delay)
        if signal.name == self.fail_on:
            raise RuntimeError("handler exploded")
        self.log.append((self.service, routine, signal.name, signal.payload_copy()))


def _bus(name: str, network: SignalNetwork, log: list, **kwargs) -> SignalBus:
    bus = SignalBus(name, network=network)
    bus.attach_runner(Recorder(name, log, **kwargs))
    return bus


# ── Signal Model ──────────────────────────────────────────────────────


class TestSignalModel:
    def test_payload_is_detached_from_source(self):
        source = {"device_id": "device-1", "readings": {"temperature": 20.0}}
        signal = Signal(name="runner.new_telemetry", payload=source)
        source["readings"]["temperature"] = 99.0
        assert signal.payload["readings"]["temperature"] == 20.0

    def test_payload_copy_is_private(self):
        signal = Signal(name="x", payload={"values": [1, 2]})
        copy = signal.payload_copy()
        copy["values"].append(3)
        assert signal.payload["values"] == [1, 2]

    def test_signal_is_frozen(self):
        signal = Signal(name="x")
        with pytest.raises(ValidationError):
            signal.name = "y"

    def test_empty_targets_mean_local(self):
        assert Signal(name="x", target_services=[]).is_local
        assert Signal(name="x").is_local
        assert not Signal(name="x", target_services="predictor").is_local


# ── Delivery ──────────────────────────────────────────────────────────


class TestDelivery:
    @pytest.mark.asyncio
    async def test_local_signal_stays_on_emitting_bus(self):
        log = []
        network = SignalNetwork()
        a = _bus("a", network, log)
        b = _bus("b", network, log)
        a.subscribe("ping", "routine-a")
        b.subscribe("ping", "routine-b")
        await a.start()
        await b.start()

        a.publish("ping", {"device_id": "device-1"})
        await network.drain()

        assert [entry[0] for entry in log] == ["a"]
        await a.stop()
        await b.stop()

    @pytest.mark.asyncio
    async def test_targeted_signal_reaches_only_named_services(self):
        log = []
        network = SignalNetwork()
        buses = [_bus(name, network, log) for name in ("a", "b", "c")]
        for bus in buses:
            bus.subscribe("ping", f"routine-{bus.service_name}")
            await bus.start()

        buses[0].publish("ping", {"device_id": "device-1"}, target_services=["b", "c"])
        await network.drain()

        assert sorted(entry[0] for entry in log) == ["b", "c"]
        for bus in buses:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_self_target_delivers_locally(self):
        log = []
        network = SignalNetwork()
        a = _bus("a", network, log)
        a.subscribe("ping", "routine-a")
        await a.start()

        a.publish("ping", {}, target_services=["a"])
        await network.drain()

        assert [entry[0] for entry in log] == ["a"]
        await a.stop()

    @pytest.mark.asyncio
    async def test_unknown_target_is_skipped(self):
        log = []
        network = SignalNetwork()
        a = _bus("a", network, log)
        b = _bus("b", network, log)
        b.subscribe("ping", "routine-b")
        await a.start()
        await b.start()

        a.publish("ping", {}, target_services=["ghost", "b"])
        await network.drain()

        assert [entry[0] for entry in log] == ["b"]
        await a.stop()
        await b.stop()

    @pytest.mark.asyncio
    async def test_every_subscribed_routine_runs(self):
        log = []
        bus = _bus("a", SignalNetwork(), log)
        bus.subscribe("ping", "first")
        bus.subscribe("ping", "second")
        await bus.start()

        bus.publish("ping", {})
        await bus.drain()

        assert sorted(entry[1] for entry in log) == ["first", "second"]
        await bus.stop()

    @pytest.mark.asyncio
    async def test_consumer_mutation_does_not_leak(self):
        seen = []
        bus = SignalBus("a")

        async def mutate(routine, signal):
            payload = signal.payload_copy()
            payload["readings"]["temperature"] = -1
            seen.append(signal.payload["readings"]["temperature"])

        bus.attach_runner(mutate)
        bus.subscribe("ping", "one")
        bus.subscribe("ping", "two")
        await bus.start()

        bus.publish("ping", {"readings": {"temperature": 21.5}})
        await bus.drain()

        assert seen == [21.5, 21.5]
        await bus.stop()

    @pytest.mark.asyncio
    async def test_publisher_mutation_after_publish_does_not_leak(self):
        seen = []
        bus = SignalBus("a")

        async def record(routine, signal):
            seen.append(signal.payload["device_id"])

        bus.attach_runner(record)
        bus.subscribe("ping", "one")

        signal = bus.publish("ping", {"device_id": "device-1"})
        signal.payload["device_id"] = "tampered"
        await bus.start()
        await bus.drain()

        assert seen == ["device-1"]
        assert bus.history("ping")[0].payload["device_id"] == "device-1"
        await bus.stop()


# ── Ordering ──────────────────────────────────────────────────────────


class TestOrdering:
    @pytest.mark.asyncio
    async def test_fifo_per_signal_name(self):
        log = []
        bus = _bus("a", SignalNetwork(), log)
        bus.subscribe("ping", "routine")
        await bus.start()

        for i in range(10):
            bus.publish("ping", {"seq": i})
        await bus.drain()

        assert [entry[3]["seq"] for entry in log] == list(range(10))
        await bus.stop()


# ── Errors ────────────────────────────────────────────────────────────


class TestErrors:
    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_bus(self):
        log = []
        bus = _bus("a", SignalNetwork(), log, fail_on="boom")
        bus.subscribe("boom", "routine")
        bus.subscribe("ping", "routine")
        await bus.start()

        bus.publish("boom", {})
        bus.publish("ping", {})
        await bus.drain()

        assert [entry[2] for entry in log] == ["ping"]
        assert bus.is_running
        await bus.stop()

    @pytest.mark.asyncio
    async def test_start_without_runner_raises(self):
        bus = SignalBus("a")
        with pytest.raises(RuntimeError):
            await bus.start()

    def test_duplicate_bus_name_rejected(self):
        network = SignalNetwork()
        SignalBus("a", network=network)
        with pytest.raises(ValueError):
            SignalBus("a", network=network)


# ── Lifecycle ─────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_cancels_runs_after_grace(self):
        started = asyncio.Event()

        async def hang(routine, signal):
            started.set()
            await asyncio.sleep(60)

        bus = SignalBus("a")
        bus.attach_runner(hang)
        bus.subscribe("ping", "routine")
        await bus.start()

        bus.publish("ping", {})
        await asyncio.wait_for(started.wait(), 1)
        assert bus.inflight_count == 1

        await bus.stop(grace_seconds=0.05)
        assert bus.inflight_count == 0
        assert not bus.is_running

    @pytest.mark.asyncio
    async def test_drain_waits_for_inflight_runs(self):
        log = []
        bus = _bus("a", SignalNetwork(), log, delay=0.05)
        bus.subscribe("ping", "routine")
        await bus.start()

        bus.publish("ping", {})
        await bus.drain()

        assert len(log) == 1
        assert not bus.is_busy
        await bus.stop()

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self):
        log = []
        bus = _bus("a", SignalNetwork(), log)
        sub_id = bus.subscribe("ping", "routine")
        await bus.start()

        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        bus.publish("ping", {})
        await bus.drain()

        assert log == []
        await bus.stop()

    def test_history_is_bounded(self):
        bus = SignalBus("a", history_size=3)
        for i in range(5):
            bus.publish("ping", {"seq": i})
        assert [s.payload["seq"] for s in bus.history()] == [2, 3, 4]
        assert bus.history("other") == []
