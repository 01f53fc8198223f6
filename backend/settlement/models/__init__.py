"""
数据库模型
"""
from settlement.models.pending_settlement import PendingSettlementDetail
from settlement.models.arrival_data import ArrivalDataDetail
from settlement.models.cost_settlement import CostSettlement

__all__ = ["PendingSettlementDetail", "ArrivalDataDetail", "CostSettlement"]
