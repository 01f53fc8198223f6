"""
结算原始明细 API（待结算 / 到账）
"""
from datetime import date, datetime
from typing import Literal, Optional
from fastapi import APIRouter, Depends, Query, HTTPException

from settlement.models.arrival_data import ArrivalDataDetail
from settlement.models.pending_settlement import PendingSettlementDetail
from settlement.schemas.query import PaginationParams, QueryResult
from settlement.services.aggregator import SettlementSource
from settlement.services.query_optimizer import FIELD_SELECTIONS, QueryOptimizer
from settlement.services.settlement_service import SettlementService
from settlement.api.deps import get_query_optimizer, get_settlement_service

router = APIRouter()


def _base_where(mall_id: Optional[str], region_code: Optional[str], sku_id: Optional[str]) -> dict:
    where = {}
    if mall_id:
        where["mall_id"] = mall_id
    if region_code:
        where["region_code"] = region_code
    if sku_id:
        where["sku_id"] = [s.strip() for s in sku_id.split(",") if s.strip()]
    return where


@router.get("/pending", response_model=QueryResult)
async def query_pending_details(
    mall_id: Optional[str] = Query(None, description="店铺ID"),
    region_code: Optional[str] = Query(None, description="地区代码"),
    sku_id: Optional[str] = Query(None, description="SKU ID，多个用逗号分隔"),
    page_index: Optional[int] = Query(None, ge=1, description="页码"),
    page_size: Optional[int] = Query(None, ge=1, description="每页数量"),
    cursor: Optional[str] = Query(None, description="游标"),
    limit: Optional[int] = Query(None, ge=1, description="游标分页数量"),
    sort_field: Optional[str] = Query(None, description="排序字段"),
    sort_order: Optional[Literal["asc", "desc", "ASC", "DESC"]] = Query(None, description="排序方向"),
    optimizer: QueryOptimizer = Depends(get_query_optimizer),
):
    """查询待结算明细"""
    pagination = PaginationParams.from_query(
        page_index=page_index, page_size=page_size, cursor=cursor,
        limit=limit, sort_field=sort_field, sort_order=sort_order,
    )
    try:
        return await optimizer.query(
            PendingSettlementDetail,
            _base_where(mall_id, region_code, sku_id),
            pagination,
            "pending_settlement_details",
            fields=FIELD_SELECTIONS["PENDING_SETTLEMENT"],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/arrival", response_model=QueryResult)
async def query_arrival_details(
    mall_id: Optional[str] = Query(None, description="店铺ID"),
    region_code: Optional[str] = Query(None, description="地区代码"),
    sku_id: Optional[str] = Query(None, description="SKU ID，多个用逗号分隔"),
    start_date: Optional[date] = Query(None, description="核算开始日期"),
    end_date: Optional[date] = Query(None, description="核算结束日期"),
    page_index: Optional[int] = Query(None, ge=1, description="页码"),
    page_size: Optional[int] = Query(None, ge=1, description="每页数量"),
    cursor: Optional[str] = Query(None, description="游标"),
    limit: Optional[int] = Query(None, ge=1, description="游标分页数量"),
    sort_field: Optional[str] = Query(None, description="排序字段"),
    sort_order: Optional[Literal["asc", "desc", "ASC", "DESC"]] = Query(None, description="排序方向"),
    optimizer: QueryOptimizer = Depends(get_query_optimizer),
):
    """查询到账明细（可按核算日期筛选）"""
    where = _base_where(mall_id, region_code, sku_id)
    accounting = {}
    if start_date:
        accounting["gte"] = datetime.combine(start_date, datetime.min.time())
    if end_date:
        accounting["lte"] = datetime.combine(end_date, datetime.max.time())
    if accounting:
        where["accounting_time"] = accounting

    pagination = PaginationParams.from_query(
        page_index=page_index, page_size=page_size, cursor=cursor,
        limit=limit, sort_field=sort_field, sort_order=sort_order,
    )
    try:
        return await optimizer.query(
            ArrivalDataDetail,
            where,
            pagination,
            "arrival_data_details",
            fields=FIELD_SELECTIONS["ARRIVAL_DATA"],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{source}/is-updated")
async def is_source_updated(
    source: SettlementSource,
    mall_id: str = Query(..., description="店铺ID"),
    region_code: Optional[str] = Query(None, description="地区代码"),
    service: SettlementService = Depends(get_settlement_service),
):
    """原始明细是否在近几个小时内更新过（用于判断是否需要重新采集）"""
    updated = await service.is_source_fresh(source, mall_id, region_code)
    return {"updated": updated}
