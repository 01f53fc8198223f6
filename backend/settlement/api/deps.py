"""
API 依赖：进程级共享对象（缓存、锁、会话工厂）在 lifespan 中创建并挂在 app.state 上
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import get_settings
from settlement.database import async_session_maker, get_db
from settlement.services.cache_store import CacheStore
from settlement.services.pipeline import KeyedLocks, SettlementPipeline
from settlement.services.query_optimizer import QueryOptimizer, QueryOptimizerConfig
from settlement.services.settlement_service import SettlementService


def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.cache_store


def get_locks(request: Request) -> KeyedLocks:
    return request.app.state.settlement_locks


def get_session_maker(request: Request):
    return getattr(request.app.state, "session_maker", async_session_maker)


def get_query_optimizer(
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache_store),
) -> QueryOptimizer:
    return QueryOptimizer(db, cache, QueryOptimizerConfig.from_settings(get_settings()))


def get_settlement_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheStore = Depends(get_cache_store),
    locks: KeyedLocks = Depends(get_locks),
) -> SettlementService:
    return SettlementService(db, cache=cache, locks=locks)


def get_pipeline(
    session_maker=Depends(get_session_maker),
    cache: CacheStore = Depends(get_cache_store),
    locks: KeyedLocks = Depends(get_locks),
) -> SettlementPipeline:
    return SettlementPipeline(session_maker, cache=cache, locks=locks)
