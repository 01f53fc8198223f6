"""
成本结算表写入（按 sku_id 更新或插入）

待结算与 30 天到账两组字段由不同任务独立写入，用显式的字段组类型表达，
每次写入只会触碰所属字段组 + 已提供的描述字段，cost_price 永远不写。
"""

from __future__ import annotations

from dataclasses import dataclass, fields as dataclass_fields
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.cost_settlement import CostSettlement
from settlement.services.aggregator import SettlementSource, SkuAggregate
from settlement.services.profit import ProfitMetrics


@dataclass(frozen=True)
class DescriptiveFields:
    """共享描述字段；为 None 的字段不写入"""
    mall_name: Optional[str] = None
    sku_code: Optional[str] = None
    sku_property: Optional[str] = None
    goods_name: Optional[str] = None

    @classmethod
    def from_aggregate(cls, aggregate: SkuAggregate) -> "DescriptiveFields":
        return cls(
            mall_name=aggregate.mall_name,
            sku_code=aggregate.sku_code,
            sku_property=aggregate.sku_property,
            goods_name=aggregate.goods_name,
        )

    def columns(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in dataclass_fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class PendingFields:
    """待结算字段组"""
    updated_time_column: ClassVar[str] = "pending_updated_time"

    average_price: float
    sales_volume: int
    sales_amount: float
    gross_profit: Optional[float] = None
    profit_rate: Optional[float] = None
    source_updated_time: Optional[datetime] = None

    def columns(self) -> Dict[str, Any]:
        return {
            "pending_average_price": self.average_price,
            "pending_sales_volume": self.sales_volume,
            "pending_sales_amount": self.sales_amount,
            "pending_gross_profit": self.gross_profit,
            "pending_profit_rate": self.profit_rate,
        }


@dataclass(frozen=True)
class ArrivalFields:
    """30天到账字段组"""
    updated_time_column: ClassVar[str] = "arrival_updated_time"

    average_price: float
    sales_volume: int
    sales_amount: float
    gross_profit: Optional[float] = None
    profit_rate: Optional[float] = None
    source_updated_time: Optional[datetime] = None

    def columns(self) -> Dict[str, Any]:
        return {
            "d30_arrival_average_price": self.average_price,
            "d30_arrival_sales_volume": self.sales_volume,
            "d30_arrival_sales_amount": self.sales_amount,
            "d30_arrival_gross_profit": self.gross_profit,
            "d30_arrival_profit_rate": self.profit_rate,
        }


FieldGroup = Union[PendingFields, ArrivalFields]


def build_field_group(
    source: SettlementSource,
    aggregate: SkuAggregate,
    metrics: ProfitMetrics,
    normalized_amount: float,
) -> FieldGroup:
    group_cls = PendingFields if source == SettlementSource.PENDING else ArrivalFields
    return group_cls(
        average_price=metrics.average_price,
        sales_volume=aggregate.sales_volume_sum,
        sales_amount=normalized_amount,
        gross_profit=metrics.gross_profit,
        profit_rate=metrics.profit_rate,
        source_updated_time=aggregate.source_updated_time,
    )


class SettlementUpserter:
    """成本结算表按 sku_id 的读-改-写单元（不负责提交事务）"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    async def get_for_update(self, sku_id: str) -> Optional[CostSettlement]:
        """按唯一键 sku_id 读取并加行锁（SQLite 忽略 FOR UPDATE，跨进程的交错写入由版本号检出）"""
        result = await self.db.execute(
            select(CostSettlement)
            .where(CostSettlement.sku_id == sku_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def apply(
        self,
        existing: Optional[CostSettlement],
        mall_id: str,
        sku_id: str,
        group: FieldGroup,
        descriptive: Optional[DescriptiveFields] = None,
    ) -> bool:
        """
        写入一个字段组

        Returns:
            True 表示新插入，False 表示更新已有行
        """
        now = self.clock()
        values = group.columns()
        values[group.updated_time_column] = group.source_updated_time or now
        values["updated_time"] = now
        if descriptive is not None:
            values.update(descriptive.columns())

        if existing is not None:
            # 只更新本字段组与提供的描述字段；cost_price 等其他列原样保留
            for column, value in values.items():
                setattr(existing, column, value)
            await self.db.flush()
            return False

        record = CostSettlement(
            mall_id=mall_id,
            sku_id=sku_id,
            mall_name=values.pop("mall_name", "") or "",
            created_time=now,
            **values,
        )
        self.db.add(record)
        await self.db.flush()
        return True

    async def upsert(
        self,
        mall_id: str,
        sku_id: str,
        group: FieldGroup,
        descriptive: Optional[DescriptiveFields] = None,
    ) -> bool:
        existing = await self.get_for_update(sku_id)
        return await self.apply(existing, mall_id, sku_id, group, descriptive)
