"""
成本结算相关 Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict


class CostPriceUpdate(BaseModel):
    """手动修改成本价"""
    cost_price: float = Field(..., ge=0, description="产品成本（人民币）")
    product_name: Optional[str] = None


class SettlementRunReport(BaseModel):
    """一次结算任务的执行结果"""
    source: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: Dict[str, str] = {}       # sku_id -> 错误信息
    started_at: datetime
    finished_at: Optional[datetime] = None


class GroupSummary(BaseModel):
    """单个字段组（待结算 / 30天到账）的店铺汇总"""
    sales_volume: int = 0
    sales_amount: float = 0
    cost: float = 0                   # 成本合计 = Σ 成本价 × 销量
    gross_profit: float = 0
    gross_loss_profit: float = 0      # 亏损毛利 = Σ 负毛利
    average_profit: float = 0         # 单件利润 = 毛利 / 销量
    profit_rate: float = 0            # 利润率 = 毛利 / 成本
    updated_time: Optional[datetime] = None


class MallSummary(BaseModel):
    """店铺成本结算汇总（只统计已维护成本价的 SKU）"""
    mall_id: str
    pending: GroupSummary
    arrival: GroupSummary
