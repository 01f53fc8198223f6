"""
API Tests: settlement list, sync, cost edits, mall summary, raw details.
"""

from datetime import datetime

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
class TestHealthCheck:
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_root(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"


@pytest.mark.asyncio
class TestCostSettlementAPI:
    async def test_list_empty(self, client: AsyncClient):
        response = await client.get("/api/cost-settlement")
        assert response.status_code == 200
        data = response.json()
        assert data["data"] == []
        assert data["has_more"] is False

    async def test_sync_then_list(self, client: AsyncClient, add_pending):
        await add_pending(
            {"mall_id": "1", "sku_id": "A", "sales_volume": 10, "sales_amount": 250},
            {"mall_id": "1", "sku_id": "B", "sales_volume": 2, "sales_amount": 30},
        )
        response = await client.post("/api/cost-settlement/sync/pending")
        assert response.status_code == 200
        report = response.json()
        assert report["source"] == "pending"
        assert report["processed"] == 2
        assert report["created"] == 2
        assert report["failed"] == {}

        response = await client.get("/api/cost-settlement", params={"page_index": 1, "page_size": 10})
        data = response.json()
        assert data["total"] == 2
        assert data["total_pages"] == 1
        prices = {row["sku_id"]: row["pending_average_price"] for row in data["data"]}
        assert prices == {"A": 25.0, "B": 15.0}

    async def test_cursor_paging(self, client: AsyncClient, add_pending):
        await add_pending(*[
            {"mall_id": "1", "sku_id": f"S{i}", "sales_volume": 1, "sales_amount": 10} for i in range(3)
        ])
        await client.post("/api/cost-settlement/sync/pending")

        seen = []
        params = {"limit": 2}
        while True:
            data = (await client.get("/api/cost-settlement", params=params)).json()
            seen.extend(row["sku_id"] for row in data["data"])
            if not data["has_more"]:
                break
            params = {"limit": 2, "cursor": data["next_cursor"]}

        assert sorted(seen) == ["S0", "S1", "S2"]

    async def test_cursor_paging_by_nullable_field(self, client: AsyncClient, add_pending):
        await add_pending(*[
            {"mall_id": "1", "sku_id": f"S{i}", "sales_volume": 1, "sales_amount": 10} for i in range(3)
        ])
        await client.post("/api/cost-settlement/sync/pending")
        await client.put("/api/cost-settlement/S1/cost-price", json={"cost_price": 5})

        seen = []
        params = {"limit": 1, "sort_field": "cost_price"}
        while True:
            data = (await client.get("/api/cost-settlement", params=params)).json()
            seen.extend(row["sku_id"] for row in data["data"])
            if not data["has_more"]:
                break
            assert data["next_cursor"] is not None
            params = {"limit": 1, "sort_field": "cost_price", "cursor": data["next_cursor"]}

        assert seen[0] == "S1"
        assert sorted(seen) == ["S0", "S1", "S2"]

        response = await client.get("/api/cost-settlement", params={"sort_field": "cost_price", "cursor": "oops"})
        assert response.status_code == 400

    async def test_sku_and_cost_status_filters(self, client: AsyncClient, add_pending):
        await add_pending(*[
            {"mall_id": "1", "sku_id": sku, "sales_volume": 1, "sales_amount": 10} for sku in ("A", "B", "C")
        ])
        await client.post("/api/cost-settlement/sync/pending")
        await client.put("/api/cost-settlement/A/cost-price", json={"cost_price": 5})

        data = (await client.get("/api/cost-settlement", params={"sku_id": "A, C", "page_index": 1})).json()
        assert {row["sku_id"] for row in data["data"]} == {"A", "C"}

        data = (await client.get("/api/cost-settlement", params={"cost_status": "completed", "page_index": 1})).json()
        assert [row["sku_id"] for row in data["data"]] == ["A"]

        data = (await client.get("/api/cost-settlement", params={"cost_status": "incomplete", "page_index": 1})).json()
        assert {row["sku_id"] for row in data["data"]} == {"B", "C"}

    async def test_invalid_sort_order(self, client: AsyncClient):
        response = await client.get("/api/cost-settlement", params={"sort_order": "sideways"})
        assert response.status_code == 422

    async def test_unknown_source(self, client: AsyncClient):
        response = await client.post("/api/cost-settlement/sync/refund")
        assert response.status_code == 422

    async def test_cost_edit_recomputes_and_refreshes_list(self, client: AsyncClient, add_pending):
        await add_pending({"mall_id": "1", "sku_id": "A", "sales_volume": 10, "sales_amount": 250})
        await client.post("/api/cost-settlement/sync/pending")

        before = (await client.get("/api/cost-settlement", params={"page_index": 1})).json()
        assert before["data"][0]["pending_gross_profit"] is None

        response = await client.put(
            "/api/cost-settlement/A/cost-price", json={"cost_price": 15, "product_name": "产品A"}
        )
        assert response.status_code == 200

        after = (await client.get("/api/cost-settlement", params={"page_index": 1})).json()
        row = after["data"][0]
        assert row["cost_price"] == 15
        assert row["product_name"] == "产品A"
        assert row["pending_gross_profit"] == pytest.approx(91.24)

    async def test_cost_edit_missing_sku(self, client: AsyncClient):
        response = await client.put("/api/cost-settlement/NOPE/cost-price", json={"cost_price": 1})
        assert response.status_code == 404

    async def test_cost_edit_rejects_negative(self, client: AsyncClient):
        response = await client.put("/api/cost-settlement/A/cost-price", json={"cost_price": -1})
        assert response.status_code == 422

    async def test_mall_summary(self, client: AsyncClient, add_pending):
        await add_pending({"mall_id": "1", "sku_id": "A", "sales_volume": 10, "sales_amount": 250})
        await client.post("/api/cost-settlement/sync/pending")
        await client.put("/api/cost-settlement/A/cost-price", json={"cost_price": 15})

        response = await client.get("/api/cost-settlement/mall/1/summary")
        assert response.status_code == 200
        pending = response.json()["pending"]
        assert pending["sales_volume"] == 10
        assert pending["cost"] == pytest.approx(150)
        assert pending["gross_profit"] == pytest.approx(91.24)


@pytest.mark.asyncio
class TestDetailsAPI:
    async def test_pending_details(self, client: AsyncClient, add_pending):
        await add_pending(
            {"mall_id": "1", "sku_id": "A", "region_code": "US", "sales_volume": 1, "sales_amount": 10},
            {"mall_id": "2", "sku_id": "B", "region_code": "EU", "sales_volume": 1, "sales_amount": 10},
        )
        data = (await client.get("/api/details/pending", params={"mall_id": "1"})).json()
        assert [row["sku_id"] for row in data["data"]] == ["A"]
        assert "region_name" not in data["data"][0]

    async def test_arrival_details_date_range(self, client: AsyncClient, add_arrival):
        await add_arrival(
            {"mall_id": "1", "sku_id": "A", "accounting_time": datetime(2024, 6, 1, 9, 0)},
            {"mall_id": "1", "sku_id": "B", "accounting_time": datetime(2024, 6, 10, 9, 0)},
        )
        data = (await client.get(
            "/api/details/arrival",
            params={"start_date": "2024-06-01", "end_date": "2024-06-05", "page_index": 1},
        )).json()
        assert data["total"] == 1
        assert data["data"][0]["sku_id"] == "A"

    async def test_is_updated(self, client: AsyncClient, add_pending):
        await add_pending({"mall_id": "1", "sku_id": "A", "updated_time": datetime.now()})

        response = await client.get("/api/details/pending/is-updated", params={"mall_id": "1"})
        assert response.status_code == 200
        assert response.json() == {"updated": True}

        response = await client.get("/api/details/arrival/is-updated", params={"mall_id": "1"})
        assert response.json() == {"updated": False}
