"""
商品目录数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from datetime import datetime, timezone

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(64), unique=True, index=True, nullable=False, comment="商品ID")
    name = Column(String(200), nullable=False, comment="商品名称")
    unit_price = Column(Integer, nullable=False, comment="单价（最小货币单位）")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码")
    active = Column(Boolean, nullable=False, default=True, comment="是否在售")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<ProductModel(product_id='{self.product_id}', unit_price={self.unit_price})>"
