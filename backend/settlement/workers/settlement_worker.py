"""
结算 Worker（定时同步）

- 按 settlement_worker_interval 周期依次执行 pending / arrival 两个来源的结算同步
- 与 API 手动触发共用同一把 KeyedLocks，避免同一 SKU 交错写入
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from settlement.config import Settings, get_settings
from settlement.database import async_session_maker
from settlement.services.aggregator import SettlementSource
from settlement.services.cache_store import CacheStore
from settlement.services.pipeline import KeyedLocks, SettlementPipeline

logger = logging.getLogger(__name__)


class SettlementWorker:
    def __init__(
        self,
        cache: Optional[CacheStore] = None,
        locks: Optional[KeyedLocks] = None,
        settings: Optional[Settings] = None,
        session_maker=None,
    ):
        self._stop_event = asyncio.Event()
        self.settings = settings or get_settings()
        self.pipeline = SettlementPipeline(
            session_maker or async_session_maker,
            cache=cache,
            settings=self.settings,
            locks=locks,
        )

    def stop(self):
        self._stop_event.set()

    async def run_once(self):
        """执行一轮同步：先待结算，再到账"""
        reports = []
        for source in (SettlementSource.PENDING, SettlementSource.ARRIVAL):
            reports.append(await self.pipeline.run(source))
        return reports

    async def run_forever(self):
        """循环执行同步任务"""
        interval = self.settings.settlement_worker_interval

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                # 避免 worker 崩溃，记录后等待下一轮
                logger.exception("定时结算同步失败")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
