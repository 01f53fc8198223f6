"""
待结算明细模型
"""
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Float
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from settlement.database import Base


class PendingSettlementDetail(Base):
    """待结算明细表（按店铺×SKU×采集批次，每日追加/覆盖，同一 SKU 可能有多行）"""
    __tablename__ = "pending_settlement_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # 店铺信息
    mall_id: Mapped[str] = mapped_column(String(255), index=True, comment="店铺ID")
    mall_name: Mapped[str] = mapped_column(String(255), default="", comment="店铺名称")
    region_code: Mapped[Optional[str]] = mapped_column(String(50), index=True, nullable=True, comment="地区代码")
    region_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, comment="地区名称")

    # SKU信息
    sku_id: Mapped[str] = mapped_column(String(255), index=True, comment="SKU ID")
    sku_code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, comment="SKU编码")
    sku_property: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="SKU属性")
    goods_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="商品名称")

    # 销售数据（金额为原币种，未换算）
    sales_volume: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="销售数量")
    sales_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="销售金额")
    currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, comment="货币类型")

    # 系统字段
    created_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, comment="记录创建时间")
    updated_time: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, index=True, comment="记录更新时间"
    )
