"""
Settlement Worker Tests: one sync round covers both sources; stop ends the loop.
"""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select

from conftest import fixed_clock
from settlement.models import CostSettlement
from settlement.workers.settlement_worker import SettlementWorker


@pytest.mark.asyncio
class TestSettlementWorker:
    async def test_run_once_syncs_both_sources(self, session_maker, cache, locks, test_settings,
                                               add_pending, add_arrival):
        await add_pending({"mall_id": "1", "sku_id": "A", "sales_volume": 10, "sales_amount": 250})
        await add_arrival({"mall_id": "1", "sku_id": "A", "sales_volume": 4, "sales_amount": 120,
                           "accounting_time": datetime(2024, 6, 10)})

        worker = SettlementWorker(cache=cache, locks=locks, settings=test_settings, session_maker=session_maker)
        worker.pipeline.clock = fixed_clock
        reports = await worker.run_once()

        assert [r.source for r in reports] == ["pending", "arrival"]
        async with session_maker() as db:
            row = (await db.execute(select(CostSettlement))).scalar_one()
        assert row.pending_average_price == 25.0
        assert row.d30_arrival_average_price == 30.0

    async def test_stop_ends_loop(self, session_maker, test_settings):
        settings = test_settings.model_copy(update={"settlement_worker_interval": 60})
        worker = SettlementWorker(settings=settings, session_maker=session_maker)

        task = asyncio.create_task(worker.run_forever())
        await asyncio.sleep(0.05)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)
        assert task.done()

    async def test_failed_round_does_not_crash_loop(self, session_maker, test_settings, monkeypatch):
        settings = test_settings.model_copy(update={"settlement_worker_interval": 0.01})
        worker = SettlementWorker(settings=settings, session_maker=session_maker)
        calls = []

        async def failing_run_once():
            calls.append(1)
            if len(calls) >= 2:
                worker.stop()
            raise RuntimeError("boom")

        monkeypatch.setattr(worker, "run_once", failing_run_once)
        await asyncio.wait_for(worker.run_forever(), timeout=1)
        assert len(calls) == 2
