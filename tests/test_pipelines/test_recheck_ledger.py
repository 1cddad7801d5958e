"""
Tests for the once-per-reading re-check ledger.
"""

import pytest

from devicepulse.db.binding import TELEMETRY
from devicepulse.exceptions import TelemetryValidationError
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.task import Emitter
from devicepulse.pipelines.telemetry_collector import RecheckLedger, build_revalidate
from devicepulse.signals import models as sig


class TestRecheckLedger:
    def test_claims_each_key_once(self):
        ledger = RecheckLedger()
        assert ledger.claim("row-1")
        assert not ledger.claim("row-1")
        assert ledger.claim("row-2")

    def test_oldest_key_is_forgotten(self):
        ledger = RecheckLedger(max_size=2)
        for key in ("a", "b", "c"):
            ledger.claim(key)
        assert len(ledger) == 2
        assert ledger.claim("a")


class TestRevalidate:
    @pytest.mark.asyncio
    async def test_same_reading_is_rechecked_once(self, memory_db):
        row = await memory_db.insert(TELEMETRY, {"device_id": "device-1", "temperature": 21.0, "humidity": 50.0})
        task = build_revalidate(memory_db, RecheckLedger())

        first = Emitter()
        ctx = await task.handler(Context({"device_id": "device-1"}), first)
        assert ctx["telemetry"]["uuid"] == row["uuid"]
        assert [e.name for e in first.emissions] == [sig.TELEMETRY_RECHECK_INITIATED]

        second = Emitter()
        with pytest.raises(TelemetryValidationError, match="already re-checked"):
            await task.handler(Context({"device_id": "device-1"}), second)
        assert second.emissions == []

    @pytest.mark.asyncio
    async def test_without_ledger_rechecks_repeat(self, memory_db):
        await memory_db.insert(TELEMETRY, {"device_id": "device-2", "temperature": 21.0, "humidity": 50.0})
        task = build_revalidate(memory_db)
        for _ in range(2):
            ctx = await task.handler(Context({"device_id": "device-2"}), Emitter())
            assert ctx["telemetry"]["readings"]["temperature"] == 21.0
