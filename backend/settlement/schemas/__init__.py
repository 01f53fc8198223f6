"""
Pydantic 模式定义
"""
from settlement.schemas.query import PaginationParams, QueryResult
from settlement.schemas.cost_settlement import (
    CostPriceUpdate,
    SettlementRunReport,
    GroupSummary,
    MallSummary,
)

__all__ = [
    "PaginationParams", "QueryResult",
    "CostPriceUpdate", "SettlementRunReport", "GroupSummary", "MallSummary",
]
