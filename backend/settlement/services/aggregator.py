"""
结算原始数据聚合

按 (mall_id, sku_id) 对待结算 / 到账明细做分组求和，
描述性字段（名称、编码、币种等）取该 SKU 最近更新的一行。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Type, Union

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.arrival_data import ArrivalDataDetail
from settlement.models.pending_settlement import PendingSettlementDetail

RawDetail = Union[Type[PendingSettlementDetail], Type[ArrivalDataDetail]]


class SettlementSource(str, Enum):
    """结算数据来源"""
    PENDING = "pending"
    ARRIVAL = "arrival"


@dataclass(frozen=True)
class TimeWindow:
    """按天的闭区间 [start, end]"""
    start: date
    end: date

    @property
    def start_dt(self) -> datetime:
        return datetime.combine(self.start, datetime.min.time())

    @property
    def end_dt(self) -> datetime:
        return datetime.combine(self.end, datetime.max.time())


def trailing_window(today: date, days: int = 30) -> TimeWindow:
    """到账统计窗口：today - days 到 today - 1（不含今天）"""
    return TimeWindow(start=today - timedelta(days=days), end=today - timedelta(days=1))


@dataclass(frozen=True)
class SkuAggregate:
    """单个 (mall_id, sku_id) 的聚合结果"""
    mall_id: str
    sku_id: str
    sales_volume_sum: int
    sales_amount_sum: float

    # 描述字段：取最近更新的一行，不参与求和
    mall_name: Optional[str] = None
    sku_code: Optional[str] = None
    sku_property: Optional[str] = None
    goods_name: Optional[str] = None
    currency: Optional[str] = None
    source_updated_time: Optional[datetime] = None


def detail_model(source: SettlementSource) -> RawDetail:
    if source == SettlementSource.PENDING:
        return PendingSettlementDetail
    if source == SettlementSource.ARRIVAL:
        return ArrivalDataDetail
    raise ValueError(f"未知的结算来源: {source}")


class SettlementAggregator:
    """结算原始数据聚合器"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def aggregate(
        self,
        source: SettlementSource,
        window: Optional[TimeWindow] = None,
        mall_ids: Optional[Sequence[str]] = None,
        sku_id: Optional[str] = None,
    ) -> List[SkuAggregate]:
        """
        聚合某一来源的明细数据

        Args:
            source: pending（不加时间窗口，待结算是实时余额）/ arrival（必须给窗口）
            window: 到账核算时间窗口，按 accounting_time 过滤
            mall_ids: 只统计这些店铺（可选）
            sku_id: 只统计单个 SKU（可选，用于单 SKU 重算）

        Returns:
            聚合结果列表；没有明细行的 SKU 不会出现
        """
        model = detail_model(source)
        if source == SettlementSource.ARRIVAL and window is None:
            raise ValueError("到账数据聚合必须指定时间窗口")

        conditions = []
        if source == SettlementSource.ARRIVAL:
            conditions.append(model.accounting_time >= window.start_dt)
            conditions.append(model.accounting_time <= window.end_dt)
        if mall_ids is not None:
            conditions.append(model.mall_id.in_(list(mall_ids)))
        if sku_id is not None:
            conditions.append(model.sku_id == sku_id)

        # 1. 分组求和
        sum_query = select(
            model.mall_id,
            model.sku_id,
            func.coalesce(func.sum(model.sales_volume), 0).label("sales_volume_sum"),
            func.coalesce(func.sum(model.sales_amount), 0).label("sales_amount_sum"),
        )
        if conditions:
            sum_query = sum_query.where(and_(*conditions))
        sum_query = sum_query.group_by(model.mall_id, model.sku_id)

        sum_result = await self.db.execute(sum_query)
        sums = sum_result.all()
        if not sums:
            return []

        # 2. 描述字段：同一行集合内每个 SKU 最近更新的一行
        latest = await self._latest_rows(model, conditions, {row.sku_id for row in sums})

        aggregates = []
        for row in sums:
            desc = latest.get(row.sku_id)
            aggregates.append(
                SkuAggregate(
                    mall_id=row.mall_id,
                    sku_id=row.sku_id,
                    sales_volume_sum=int(row.sales_volume_sum or 0),
                    sales_amount_sum=float(row.sales_amount_sum or 0),
                    mall_name=desc.mall_name if desc else None,
                    sku_code=desc.sku_code if desc else None,
                    sku_property=desc.sku_property if desc else None,
                    goods_name=desc.goods_name if desc else None,
                    currency=desc.currency if desc else None,
                    source_updated_time=desc.updated_time if desc else None,
                )
            )
        return aggregates

    async def _latest_rows(self, model: RawDetail, conditions: list, sku_ids: set) -> Dict[str, object]:
        stmt = select(
            model.sku_id,
            model.mall_name,
            model.sku_code,
            model.sku_property,
            model.goods_name,
            model.currency,
            model.updated_time,
        ).where(model.sku_id.in_(list(sku_ids)))
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(model.updated_time.desc(), model.id.desc())

        result = await self.db.execute(stmt)
        latest: Dict[str, object] = {}
        for row in result.all():
            # 已按更新时间倒序，第一次出现的即为最新
            if row.sku_id not in latest:
                latest[row.sku_id] = row
        return latest

    async def latest_updated_time(
        self,
        source: SettlementSource,
        mall_id: str,
        region_code: Optional[str] = None,
    ) -> Optional[datetime]:
        """某店铺（可选地区）明细数据的最近更新时间"""
        model = detail_model(source)
        stmt = select(func.max(model.updated_time)).where(model.mall_id == mall_id)
        if region_code is not None:
            stmt = stmt.where(model.region_code == region_code)
        result = await self.db.execute(stmt)
        return result.scalar()
