"""
结算任务：聚合 → 利润计算 → 写入成本结算表

- pending / arrival 两个来源各自独立运行，写入同一行的不同字段组
- 同一来源同一 SKU 的读-改-写按 (source, sku_id) 串行化
- 单个 SKU 失败只记录到报告，不影响整批
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Hashable, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from settlement.config import Settings, get_settings
from settlement.schemas.cost_settlement import SettlementRunReport
from settlement.services.aggregator import (
    SettlementAggregator,
    SettlementSource,
    SkuAggregate,
    trailing_window,
)
from settlement.services.cache_store import CacheStore, invalidate_after_write
from settlement.services.currency import to_base_currency
from settlement.services.profit import FeeModel, compute_metrics
from settlement.services.upserter import DescriptiveFields, SettlementUpserter, build_field_group

logger = logging.getLogger(__name__)


class KeyedLocks:
    """按键分配的 asyncio.Lock；多个键按固定顺序加锁，避免互相等待"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        locks = [self._lock_for(key) for key in sorted(set(keys), key=repr)]
        acquired = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class SettlementPipeline:
    """成本结算同步任务"""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cache: Optional[CacheStore] = None,
        settings: Optional[Settings] = None,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
        concurrency: Optional[int] = None,
    ):
        self.session_maker = session_maker
        self.cache = cache
        self.settings = settings or get_settings()
        self.locks = locks or KeyedLocks()
        self.clock = clock
        self.concurrency = max(concurrency or self.settings.settlement_concurrency, 1)

    async def run(
        self,
        source: SettlementSource,
        mall_ids: Optional[Sequence[str]] = None,
        sku_id: Optional[str] = None,
    ) -> SettlementRunReport:
        """
        执行一次结算同步

        Args:
            source: pending / arrival
            mall_ids: 只同步这些店铺（可选）
            sku_id: 只同步单个 SKU（可选）

        Returns:
            执行报告（失败的 SKU 及原因在 failed 中）
        """
        source = SettlementSource(source)
        report = SettlementRunReport(source=source.value, started_at=self.clock())

        window = None
        if source == SettlementSource.ARRIVAL:
            window = trailing_window(self.clock().date(), self.settings.arrival_window_days)

        async with self.session_maker() as db:
            aggregates = await SettlementAggregator(db).aggregate(
                source, window=window, mall_ids=mall_ids, sku_id=sku_id
            )

        semaphore = asyncio.Semaphore(self.concurrency)
        await asyncio.gather(*(self._reconcile_guarded(source, agg, semaphore, report) for agg in aggregates))

        report.processed = len(aggregates)
        report.finished_at = self.clock()

        if report.created or report.updated:
            await invalidate_after_write(self.cache, self.settings.cache_prefix, "cost_settlement")

        logger.info(
            "结算同步完成 source=%s processed=%d created=%d updated=%d failed=%d",
            source.value, report.processed, report.created, report.updated, len(report.failed),
        )
        return report

    async def _reconcile_guarded(
        self,
        source: SettlementSource,
        aggregate: SkuAggregate,
        semaphore: asyncio.Semaphore,
        report: SettlementRunReport,
    ) -> None:
        async with semaphore:
            try:
                created = await self.reconcile_one(source, aggregate)
            except Exception as e:
                # 单个 SKU 失败不影响整批
                logger.exception("结算同步失败 source=%s sku_id=%s", source.value, aggregate.sku_id)
                report.failed[aggregate.sku_id] = str(e)
                return
        if created:
            report.created += 1
        else:
            report.updated += 1

    async def reconcile_one(self, source: SettlementSource, aggregate: SkuAggregate) -> bool:
        """单个 SKU 的读-改-写；唯一键冲突或版本号冲突时用新的读-改-写重试一次"""
        async with self.locks.hold((source.value, aggregate.sku_id)):
            try:
                return await self._write(source, aggregate)
            except (IntegrityError, StaleDataError):
                logger.warning("写入冲突，重试一次 source=%s sku_id=%s", source.value, aggregate.sku_id)
                return await self._write(source, aggregate)

    async def _write(self, source: SettlementSource, aggregate: SkuAggregate) -> bool:
        async with self.session_maker() as db:
            upserter = SettlementUpserter(db, clock=self.clock)
            existing = await upserter.get_for_update(aggregate.sku_id)
            cost_price = existing.cost_price if existing is not None else None

            rate = self.settings.usd_to_cny_rate
            metrics = compute_metrics(aggregate, cost_price, FeeModel.for_source(source), rate)
            normalized_amount = to_base_currency(aggregate.sales_amount_sum, aggregate.currency, rate)
            group = build_field_group(source, aggregate, metrics, normalized_amount)

            created = await upserter.apply(
                existing,
                aggregate.mall_id,
                aggregate.sku_id,
                group,
                DescriptiveFields.from_aggregate(aggregate),
            )
            await db.commit()
            return created
