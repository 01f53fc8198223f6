"""
业务服务层
"""
from settlement.services.aggregator import SettlementAggregator, SettlementSource, TimeWindow, trailing_window
from settlement.services.cache_store import CacheStore, MemoryCacheStore, RedisCacheStore, build_cache_store
from settlement.services.currency import to_base_currency
from settlement.services.pipeline import KeyedLocks, SettlementPipeline
from settlement.services.profit import FeeModel, compute_metrics
from settlement.services.query_optimizer import QueryOptimizer, QueryOptimizerConfig
from settlement.services.settlement_service import SettlementService
from settlement.services.upserter import ArrivalFields, DescriptiveFields, PendingFields, SettlementUpserter

__all__ = [
    "SettlementAggregator",
    "SettlementSource",
    "TimeWindow",
    "trailing_window",
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "build_cache_store",
    "to_base_currency",
    "KeyedLocks",
    "SettlementPipeline",
    "FeeModel",
    "compute_metrics",
    "QueryOptimizer",
    "QueryOptimizerConfig",
    "SettlementService",
    "ArrivalFields",
    "DescriptiveFields",
    "PendingFields",
    "SettlementUpserter",
]
