"""
成本结算模型
"""
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Float, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from settlement.database import Base


class CostSettlement(Base):
    """成本结算汇总表 - 每个 SKU 一行，界面展示的唯一数据来源"""
    __tablename__ = "cost_settlement"
    __table_args__ = (
        UniqueConstraint("sku_id", name="uix_cost_settlement_sku_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # 共享描述字段
    mall_id: Mapped[str] = mapped_column(String(255), index=True, comment="店铺ID")
    mall_name: Mapped[str] = mapped_column(String(255), default="", index=True, comment="店铺名称")
    sku_id: Mapped[str] = mapped_column(String(255), index=True, comment="SKU ID")
    sku_code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, comment="SKU编码")
    sku_property: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="SKU属性")
    goods_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="商品名称")
    product_name: Mapped[Optional[str]] = mapped_column(String(510), nullable=True, comment="产品名称（人工维护）")

    # 产品成本：人工维护，结算任务永远不写
    cost_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True, index=True, comment="成本价格")

    # 待结算字段组
    pending_average_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="待结算平均价格")
    pending_sales_volume: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="待结算销售数量")
    pending_sales_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="待结算销售金额")
    pending_gross_profit: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="待结算毛利润")
    pending_profit_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="待结算利润率")
    pending_updated_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, comment="待结算更新时间")

    # 30天到账字段组
    d30_arrival_average_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="30天到账平均价格")
    d30_arrival_sales_volume: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="30天到账销售数量")
    d30_arrival_sales_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="30天到账销售金额")
    d30_arrival_gross_profit: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="30天到账毛利润")
    d30_arrival_profit_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="30天到账利润率")
    arrival_updated_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, comment="到账更新时间")

    # 系统字段
    created_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, comment="记录创建时间")
    updated_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, index=True, comment="记录更新时间")

    # 乐观锁：UPDATE 带上版本号条件，被其他进程抢先改写时抛 StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, comment="版本号（乐观锁）")

    __mapper_args__ = {"version_id_col": version}
