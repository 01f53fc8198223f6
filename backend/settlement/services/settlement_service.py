"""
成本结算服务：手动改成本价、店铺汇总、原始数据新鲜度
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from settlement.config import Settings, get_settings
from settlement.models.cost_settlement import CostSettlement
from settlement.schemas.cost_settlement import GroupSummary, MallSummary
from settlement.services.aggregator import SettlementAggregator, SettlementSource
from settlement.services.cache_store import (
    CacheStore,
    get_or_load,
    invalidate_after_write,
    make_query_cache_key,
)
from settlement.services.pipeline import KeyedLocks
from settlement.services.profit import FeeModel, profit_from_average

logger = logging.getLogger(__name__)


class SettlementService:
    """成本结算服务"""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheStore] = None,
        settings: Optional[Settings] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.cache = cache
        self.settings = settings or get_settings()
        self.locks = locks or KeyedLocks()
        self.clock = clock

    async def update_cost_price(
        self,
        sku_id: str,
        cost_price: float,
        product_name: Optional[str] = None,
        mall_ids: Optional[Sequence[str]] = None,
    ) -> bool:
        """
        手动更新成本价，并按已有均价/销量重算两组利润

        Args:
            sku_id: SKU ID
            cost_price: 新的产品成本
            product_name: 产品名称（可选）
            mall_ids: 只允许修改这些店铺下的 SKU（可选）

        Returns:
            是否更新成功（SKU 不存在时返回 False）
        """
        # 同时占用两个来源的锁，避免与结算任务交错写入利润字段
        async with self.locks.hold(
            (SettlementSource.PENDING.value, sku_id),
            (SettlementSource.ARRIVAL.value, sku_id),
        ):
            try:
                updated = await self._apply_cost_price(sku_id, cost_price, product_name, mall_ids)
            except StaleDataError:
                # 其他进程已改写该行（版本号不一致），回滚后基于最新数据重试一次
                await self.db.rollback()
                logger.warning("成本价写入冲突，重试一次 sku_id=%s", sku_id)
                updated = await self._apply_cost_price(sku_id, cost_price, product_name, mall_ids)

        if not updated:
            return False

        logger.info("成本价已更新 sku_id=%s cost_price=%s", sku_id, cost_price)
        await invalidate_after_write(self.cache, self.settings.cache_prefix, "cost_settlement")
        return True

    async def _apply_cost_price(
        self,
        sku_id: str,
        cost_price: float,
        product_name: Optional[str],
        mall_ids: Optional[Sequence[str]],
    ) -> bool:
        stmt = (
            select(CostSettlement)
            .where(CostSettlement.sku_id == sku_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if mall_ids is not None:
            stmt = stmt.where(CostSettlement.mall_id.in_(list(mall_ids)))
        result = await self.db.execute(stmt)
        record = result.scalar_one_or_none()

        if not record:
            return False

        record.cost_price = cost_price
        if product_name is not None:
            record.product_name = product_name

        if record.pending_average_price is not None:
            pending = profit_from_average(
                record.pending_average_price, record.pending_sales_volume, cost_price, FeeModel.PENDING
            )
            record.pending_gross_profit = pending.gross_profit
            record.pending_profit_rate = pending.profit_rate

        if record.d30_arrival_average_price is not None:
            arrival = profit_from_average(
                record.d30_arrival_average_price, record.d30_arrival_sales_volume, cost_price, FeeModel.ARRIVAL
            )
            record.d30_arrival_gross_profit = arrival.gross_profit
            record.d30_arrival_profit_rate = arrival.profit_rate

        record.updated_time = self.clock()
        await self.db.commit()
        return True

    async def summarize_mall(self, mall_id: str) -> MallSummary:
        """店铺成本结算汇总（带缓存）"""
        key = make_query_cache_key(self.settings.cache_prefix, "cost_settlement_mall", {"mall_id": mall_id})

        async def load() -> MallSummary:
            result = await self.db.execute(select(CostSettlement).where(CostSettlement.mall_id == mall_id))
            return build_mall_summary(mall_id, result.scalars().all())

        return await get_or_load(
            self.cache if self.settings.enable_query_cache else None,
            key,
            self.settings.cache_ttl,
            load,
            encode=lambda summary: summary.model_dump_json(),
            decode=MallSummary.model_validate_json,
        )

    async def is_source_fresh(
        self,
        source: SettlementSource,
        mall_id: str,
        region_code: Optional[str] = None,
    ) -> bool:
        """原始明细是否在 freshness_window_hours 小时内更新过"""
        updated = await SettlementAggregator(self.db).latest_updated_time(
            SettlementSource(source), mall_id, region_code
        )
        if updated is None:
            return False
        threshold = self.clock() - timedelta(hours=self.settings.freshness_window_hours)
        return updated > threshold


def _summarize_group(rows: List[tuple]) -> GroupSummary:
    """rows: (cost_price, sales_volume, sales_amount, gross_profit, updated_time)"""
    summary = GroupSummary()
    for cost_price, volume, amount, profit, updated_time in rows:
        if updated_time is not None and (summary.updated_time is None or updated_time > summary.updated_time):
            summary.updated_time = updated_time
        if cost_price is None or not volume:
            continue
        profit = profit or 0
        summary.sales_volume += int(volume)
        summary.sales_amount += float(amount or 0)
        summary.cost += cost_price * volume
        summary.gross_profit += profit
        if profit < 0:
            summary.gross_loss_profit += profit

    if summary.gross_profit and summary.cost:
        summary.profit_rate = summary.gross_profit / summary.cost
    if summary.gross_profit and summary.sales_volume:
        summary.average_profit = summary.gross_profit / summary.sales_volume
    return summary


def build_mall_summary(mall_id: str, records: Sequence[CostSettlement]) -> MallSummary:
    pending = _summarize_group([
        (r.cost_price, r.pending_sales_volume, r.pending_sales_amount, r.pending_gross_profit, r.pending_updated_time)
        for r in records
    ])
    arrival = _summarize_group([
        (r.cost_price, r.d30_arrival_sales_volume, r.d30_arrival_sales_amount,
         r.d30_arrival_gross_profit, r.arrival_updated_time)
        for r in records
    ])
    return MallSummary(mall_id=mall_id, pending=pending, arrival=arrival)
