"""
利润计算

两种费用模型：
- 待结算（pending）：尚未结算，需扣平台费用
  毛利润 = ((均价 - 成本 - 0.1) - 均价 × 2.5% - (成本 + 0.1) × 1%) × 销量
- 30天到账（arrival）：已结算收入，不再扣费
  毛利润 = (均价 - 成本) × 销量
利润率 = 毛利润 / (成本 × 销量)，是比值（0.15 即 15%），展示层负责 ×100 与 “%”。
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Optional

from settlement.services.aggregator import SettlementSource, SkuAggregate
from settlement.services.currency import USD_TO_CNY_RATE, to_base_currency

# 待结算费用模型常量
PENDING_FIXED_FEE = 0.1
PENDING_PRICE_FEE_RATE = 0.025
PENDING_COST_FEE_RATE = 0.01

CENT = Decimal("0.01")


class FeeModel(str, Enum):
    PENDING = "pending"
    ARRIVAL = "arrival"

    @classmethod
    def for_source(cls, source: SettlementSource) -> "FeeModel":
        return cls(source.value)


@dataclass(frozen=True)
class ProfitMetrics:
    average_price: float
    gross_profit: Optional[float] = None
    profit_rate: Optional[float] = None


def truncate_price(amount: float, volume: float) -> float:
    """均价截断到两位小数（不是四舍五入：12.346 -> 12.34）；销量为 0 时返回 0"""
    if not volume or volume <= 0:
        return 0.0
    # 按十进制计算，避免 1.15 这类二进制浮点误差被截成 1.14
    average = Decimal(str(amount)) / Decimal(str(volume))
    return float(average.quantize(CENT, rounding=ROUND_FLOOR))


def gross_profit(average_price: float, cost_price: float, volume: float, model: FeeModel) -> float:
    if model == FeeModel.PENDING:
        unit_profit = (
            (average_price - cost_price - PENDING_FIXED_FEE)
            - average_price * PENDING_PRICE_FEE_RATE
            - (cost_price + PENDING_FIXED_FEE) * PENDING_COST_FEE_RATE
        )
        return unit_profit * volume
    return (average_price - cost_price) * volume


def profit_from_average(
    average_price: float,
    volume: Optional[float],
    cost_price: Optional[float],
    model: FeeModel,
) -> ProfitMetrics:
    """
    已知均价时计算毛利润与利润率

    - 成本未知：毛利润、利润率均为 None（“未计算”，不是 0）
    - 成本已知但销量为 0：同样为 None
    """
    if cost_price is None or not volume or volume <= 0:
        return ProfitMetrics(average_price=average_price)

    profit = gross_profit(average_price, cost_price, volume, model)
    denominator = cost_price * volume
    rate = profit / denominator if denominator else None
    return ProfitMetrics(average_price=average_price, gross_profit=profit, profit_rate=rate)


def compute_metrics(
    aggregate: SkuAggregate,
    cost_price: Optional[float],
    model: FeeModel,
    rate: float = USD_TO_CNY_RATE,
) -> ProfitMetrics:
    """根据聚合结果与产品成本计算均价、毛利润、利润率"""
    amount = to_base_currency(aggregate.sales_amount_sum, aggregate.currency, rate)
    volume = aggregate.sales_volume_sum
    average_price = truncate_price(amount, volume)
    return profit_from_average(average_price, volume, cost_price, model)
