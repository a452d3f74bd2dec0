"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 订单引用（处理方订单号，客户端/处理方/后端之间唯一关联键）
    order_ref = Column(String(100), unique=True, index=True, nullable=False, comment="订单引用")
    receipt = Column(String(64), nullable=True, comment="商户收据号")
    idempotency_key = Column(String(128), unique=True, nullable=True, comment="客户端幂等键")

    # 金额信息（整数，最小货币单位）
    amount = Column(Integer, nullable=False, comment="订单金额（最小货币单位）")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码 ISO-4217")

    # 买家信息
    buyer_name = Column(String(200), nullable=False, comment="买家姓名")
    buyer_email = Column(String(320), nullable=False, comment="买家邮箱")
    buyer_phone = Column(String(32), nullable=False, comment="买家电话")
    billing_address = Column(JSON, nullable=True, comment="账单地址")

    # 状态
    status = Column(
        String(32),
        nullable=False,
        default="created",
        index=True,
        comment="订单状态: created/awaiting_payment/verified/failed/cancelled"
    )
    failure_reason = Column(Text, nullable=True, comment="失败/取消原因")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    verified_at = Column(DateTime(timezone=True), nullable=True, comment="支付确认时间")
    closed_at = Column(DateTime(timezone=True), nullable=True, comment="失败/取消时间")

    # 关系
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.position",
        cascade="all, delete-orphan",
    )

    # 索引
    __table_args__ = (
        Index("ix_orders_status_created_at", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_ref='{self.order_ref}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class OrderItemModel(Base):
    """订单行（按提交顺序保存）"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="关联的订单ID"
    )
    position = Column(Integer, nullable=False, default=0, comment="订单行顺序")
    product_id = Column(String(64), nullable=False, comment="商品ID")
    name = Column(String(200), nullable=False, comment="商品名称快照")
    unit_price = Column(Integer, nullable=False, comment="单价快照（最小货币单位）")
    quantity = Column(Integer, nullable=False, comment="数量")

    order = relationship("OrderModel", back_populates="items")


class PaymentAttemptModel(Base):
    """
    支付尝试数据库模型

    confirmed_order_ref 仅在 confirmed 时写入订单引用，唯一约束保证每个订单最多一条确认记录
    """
    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, index=True)
    order_ref = Column(String(100), nullable=False, index=True, comment="订单引用")
    processor_payment_ref = Column(String(100), nullable=False, comment="处理方支付ID")
    signature = Column(String(256), nullable=False, comment="回调签名")
    outcome = Column(
        String(40),
        nullable=False,
        default="pending",
        comment="结果: pending/confirmed/signature_invalid/processor_reported_failure/buyer_cancelled/amount_mismatch"
    )
    confirmed_order_ref = Column(String(100), unique=True, nullable=True, comment="已确认订单引用（唯一）")
    amount = Column(Integer, nullable=True, comment="处理方报告金额")
    currency = Column(String(3), nullable=True, comment="处理方报告币种")
    failure_reason = Column(Text, nullable=True, comment="失败原因")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    __table_args__ = (
        Index("ix_payment_attempts_order_outcome", "order_ref", "outcome"),
    )

    def __repr__(self):
        return (
            f"<PaymentAttemptModel(id={self.id}, order_ref='{self.order_ref}', "
            f"outcome='{self.outcome}')>"
        )
