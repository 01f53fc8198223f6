"""
币种换算

基准币种为人民币（CNY）；目前只有美元（USD）需要换算，使用固定汇率。
"""

from __future__ import annotations

BASE_CURRENCY = "CNY"
FOREIGN_CURRENCY = "USD"
USD_TO_CNY_RATE = 7.2


def to_base_currency(amount: float, currency: str | None, rate: float = USD_TO_CNY_RATE) -> float:
    """
    将金额换算为基准币种

    - currency 为外币（USD）：乘以固定汇率
    - 其他币种（包括无法识别的币种、空值）：视为已是基准币种，原样返回
    - 不做任何舍入，舍入在均价计算时统一处理
    """
    if currency and currency.strip().upper() == FOREIGN_CURRENCY:
        return amount * rate
    return amount
