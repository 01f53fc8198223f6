"""
Aggregator Tests: group sums, arrival window, descriptive fields.
"""

from datetime import date, datetime, timedelta

import pytest

from conftest import NOW
from settlement.services.aggregator import (
    SettlementAggregator,
    SettlementSource,
    detail_model,
    trailing_window,
)


class TestTrailingWindow:
    def test_window_excludes_today(self):
        window = trailing_window(date(2024, 6, 15), 30)
        assert window.start == date(2024, 5, 16)
        assert window.end == date(2024, 6, 14)
        assert window.start_dt == datetime(2024, 5, 16, 0, 0, 0)
        assert window.end_dt.date() == date(2024, 6, 14)


@pytest.mark.asyncio
class TestAggregate:
    async def test_pending_sums_per_sku(self, test_db, add_pending):
        await add_pending(
            {"mall_id": "1", "sku_id": "A", "sales_volume": 4, "sales_amount": 100},
            {"mall_id": "1", "sku_id": "A", "sales_volume": 6, "sales_amount": 150},
            {"mall_id": "1", "sku_id": "B", "sales_volume": 1, "sales_amount": 9.9},
        )
        aggregates = await SettlementAggregator(test_db).aggregate(SettlementSource.PENDING)
        by_sku = {a.sku_id: a for a in aggregates}

        assert set(by_sku) == {"A", "B"}
        assert by_sku["A"].sales_volume_sum == 10
        assert by_sku["A"].sales_amount_sum == pytest.approx(250)
        assert by_sku["B"].sales_volume_sum == 1

    async def test_descriptive_fields_from_latest_row(self, test_db, add_pending):
        await add_pending(
            {"mall_id": "1", "sku_id": "A", "sales_volume": 1, "sales_amount": 10,
             "goods_name": "旧名称", "updated_time": NOW - timedelta(days=1)},
            {"mall_id": "1", "sku_id": "A", "sales_volume": 1, "sales_amount": 10,
             "goods_name": "新名称", "updated_time": NOW},
        )
        [aggregate] = await SettlementAggregator(test_db).aggregate(SettlementSource.PENDING)
        assert aggregate.goods_name == "新名称"
        assert aggregate.source_updated_time == NOW

    async def test_null_values_sum_to_zero(self, test_db, add_pending):
        await add_pending({"mall_id": "1", "sku_id": "A", "sales_volume": None, "sales_amount": None})
        [aggregate] = await SettlementAggregator(test_db).aggregate(SettlementSource.PENDING)
        assert aggregate.sales_volume_sum == 0
        assert aggregate.sales_amount_sum == 0

    async def test_empty_source(self, test_db):
        assert await SettlementAggregator(test_db).aggregate(SettlementSource.PENDING) == []

    async def test_arrival_window_filters_rows(self, test_db, add_arrival):
        window = trailing_window(NOW.date(), 30)
        await add_arrival(
            {"mall_id": "1", "sku_id": "A", "sales_volume": 2, "sales_amount": 20,
             "accounting_time": datetime(2024, 6, 14, 23, 0)},
            {"mall_id": "1", "sku_id": "A", "sales_volume": 3, "sales_amount": 30,
             "accounting_time": datetime(2024, 5, 16, 0, 0)},
            # 今天与窗口之前的数据不计入
            {"mall_id": "1", "sku_id": "A", "sales_volume": 100, "sales_amount": 1000,
             "accounting_time": datetime(2024, 6, 15, 8, 0)},
            {"mall_id": "1", "sku_id": "A", "sales_volume": 100, "sales_amount": 1000,
             "accounting_time": datetime(2024, 5, 15, 23, 59)},
        )
        [aggregate] = await SettlementAggregator(test_db).aggregate(SettlementSource.ARRIVAL, window=window)
        assert aggregate.sales_volume_sum == 5
        assert aggregate.sales_amount_sum == pytest.approx(50)

    async def test_arrival_requires_window(self, test_db):
        with pytest.raises(ValueError):
            await SettlementAggregator(test_db).aggregate(SettlementSource.ARRIVAL)

    async def test_mall_and_sku_filters(self, test_db, add_pending):
        await add_pending(
            {"mall_id": "1", "sku_id": "A", "sales_volume": 1, "sales_amount": 10},
            {"mall_id": "2", "sku_id": "B", "sales_volume": 1, "sales_amount": 10},
            {"mall_id": "2", "sku_id": "C", "sales_volume": 1, "sales_amount": 10},
        )
        aggregator = SettlementAggregator(test_db)
        by_mall = await aggregator.aggregate(SettlementSource.PENDING, mall_ids=["2"])
        assert {a.sku_id for a in by_mall} == {"B", "C"}

        by_sku = await aggregator.aggregate(SettlementSource.PENDING, sku_id="C")
        assert [a.sku_id for a in by_sku] == ["C"]

    async def test_latest_updated_time(self, test_db, add_pending):
        await add_pending(
            {"mall_id": "1", "sku_id": "A", "region_code": "US", "updated_time": NOW - timedelta(hours=5)},
            {"mall_id": "1", "sku_id": "B", "region_code": "EU", "updated_time": NOW},
        )
        aggregator = SettlementAggregator(test_db)
        assert await aggregator.latest_updated_time(SettlementSource.PENDING, "1") == NOW
        assert await aggregator.latest_updated_time(
            SettlementSource.PENDING, "1", "US"
        ) == NOW - timedelta(hours=5)
        assert await aggregator.latest_updated_time(SettlementSource.PENDING, "9") is None


def test_unknown_source_rejected():
    with pytest.raises(ValueError):
        detail_model("refund")
