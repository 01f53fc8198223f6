"""
成本结算 API
"""
from typing import Literal, Optional
from fastapi import APIRouter, Depends, Query, HTTPException

from settlement.models.cost_settlement import CostSettlement
from settlement.schemas.cost_settlement import CostPriceUpdate, MallSummary, SettlementRunReport
from settlement.schemas.query import PaginationParams, QueryResult
from settlement.services.aggregator import SettlementSource
from settlement.services.pipeline import SettlementPipeline
from settlement.services.query_optimizer import FIELD_SELECTIONS, QueryOptimizer
from settlement.services.settlement_service import SettlementService
from settlement.api.deps import get_pipeline, get_query_optimizer, get_settlement_service

router = APIRouter()


@router.get("", response_model=QueryResult)
async def query_cost_settlement(
    sku_id: Optional[str] = Query(None, description="SKU ID，多个用逗号分隔"),
    mall_id: Optional[str] = Query(None, description="店铺ID"),
    mall_name: Optional[str] = Query(None, description="店铺名称"),
    cost_status: Optional[str] = Query(None, description="成本状态: completed/incomplete"),
    page_index: Optional[int] = Query(None, ge=1, description="页码"),
    page_size: Optional[int] = Query(None, ge=1, description="每页数量"),
    cursor: Optional[str] = Query(None, description="游标"),
    limit: Optional[int] = Query(None, ge=1, description="游标分页数量"),
    sort_field: Optional[str] = Query(None, description="排序字段"),
    sort_order: Optional[Literal["asc", "desc", "ASC", "DESC"]] = Query(None, description="排序方向"),
    optimizer: QueryOptimizer = Depends(get_query_optimizer),
):
    """
    查询成本结算列表

    - 传 page_index/page_size：传统分页（含总数）
    - 传 cursor 或都不传：游标分页
    """
    where = {}
    if sku_id:
        where["sku_id"] = [s.strip() for s in sku_id.split(",") if s.strip()]
    if mall_id:
        where["mall_id"] = mall_id
    if mall_name:
        where["mall_name"] = {"contains": mall_name}
    if cost_status == "completed":
        where["cost_price"] = {"is_null": False}
    elif cost_status == "incomplete":
        where["cost_price"] = {"is_null": True}

    pagination = PaginationParams.from_query(
        page_index=page_index,
        page_size=page_size,
        cursor=cursor,
        limit=limit,
        sort_field=sort_field,
        sort_order=sort_order,
    )
    try:
        return await optimizer.query(
            CostSettlement,
            where,
            pagination,
            "cost_settlement",
            fields=FIELD_SELECTIONS["COST_SETTLEMENT"],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/sync/{source}", response_model=SettlementRunReport)
async def sync_cost_settlement(
    source: SettlementSource,
    mall_id: Optional[str] = Query(None, description="只同步该店铺"),
    sku_id: Optional[str] = Query(None, description="只同步该 SKU"),
    pipeline: SettlementPipeline = Depends(get_pipeline),
):
    """
    手动触发结算同步

    - pending：待结算明细 → 成本结算
    - arrival：近30天到账明细 → 成本结算
    """
    return await pipeline.run(
        source,
        mall_ids=[mall_id] if mall_id else None,
        sku_id=sku_id,
    )


@router.put("/{sku_id}/cost-price")
async def update_cost_price(
    sku_id: str,
    body: CostPriceUpdate,
    service: SettlementService = Depends(get_settlement_service),
):
    """
    手动修改成本价

    更新后会按已有均价与销量重算利润，并清除相关缓存
    """
    success = await service.update_cost_price(
        sku_id=sku_id,
        cost_price=body.cost_price,
        product_name=body.product_name,
    )

    if not success:
        raise HTTPException(status_code=404, detail="未找到对应的 SKU 记录")

    return {"message": "成本价以及利润数据更新成功"}


@router.get("/mall/{mall_id}/summary", response_model=MallSummary)
async def get_mall_summary(
    mall_id: str,
    service: SettlementService = Depends(get_settlement_service),
):
    """店铺成本结算汇总（只统计已维护成本价的 SKU）"""
    return await service.summarize_mall(mall_id)
