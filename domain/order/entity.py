"""
订单领域实体 - 订单聚合根与支付尝试
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException, OrderValidationException


class OrderStatus(str, Enum):
    """订单状态枚举（单调推进，终态不可再变）"""
    CREATED = "created"
    AWAITING_PAYMENT = "awaiting_payment"
    VERIFIED = "verified"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.VERIFIED, OrderStatus.FAILED, OrderStatus.CANCELLED})


class AttemptOutcome(str, Enum):
    """支付尝试结果"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SIGNATURE_INVALID = "signature_invalid"
    PROCESSOR_REPORTED_FAILURE = "processor_reported_failure"
    BUYER_CANCELLED = "buyer_cancelled"
    AMOUNT_MISMATCH = "amount_mismatch"


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Address:
    country: str = ""
    state: str = ""
    city: str = ""
    zip_code: str = ""
    address: str = ""


@dataclass
class Buyer:
    """买家信息：姓名、邮箱、电话均为必填"""

    name: str
    email: str
    phone: str
    address: Optional[Address] = None

    def __post_init__(self):
        self.name = (self.name or "").strip()
        self.email = (self.email or "").strip()
        self.phone = (self.phone or "").strip()
        self.validate()

    def validate(self) -> None:
        if not self.name:
            raise OrderValidationException("Customer name is required", field="customer.name")
        if not self.email:
            raise OrderValidationException("Customer email is required", field="customer.email")
        if not _EMAIL_RE.match(self.email):
            raise OrderValidationException(f"Invalid email: {self.email}", field="customer.email")
        if not self.phone:
            raise OrderValidationException("Customer phone is required", field="customer.phone")
        digits = _PHONE_STRIP_RE.sub("", self.phone)
        if digits.startswith("+"):
            digits = digits[1:]
        if not digits.isdigit() or not 7 <= len(digits) <= 15:
            raise OrderValidationException(f"Invalid phone number: {self.phone}", field="customer.phone")


@dataclass
class LineItem:
    """订单行：单价来自服务端商品目录（最小货币单位）"""

    product_id: str
    name: str
    unit_price: int
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise OrderValidationException(
                f"Quantity must be at least 1 for product {self.product_id}",
                field="items.quantity",
            )
        if self.unit_price < 0:
            raise DomainValidationException(
                f"Unit price must not be negative: {self.unit_price}",
                field="items.price",
            )

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class Order:
    """
    订单聚合根 - 管理订单支付生命周期

    业务规则：
    1. 金额为正整数（最小货币单位），等于各订单行小计之和
    2. 状态只能单调推进：created -> awaiting_payment -> verified | failed | cancelled
    3. 终态订单不可再修改
    """

    id: Optional[int]
    order_ref: str
    amount: int
    currency: str
    line_items: List[LineItem]
    buyer: Buyer
    status: OrderStatus = OrderStatus.CREATED
    receipt: Optional[str] = None
    idempotency_key: Optional[str] = None
    failure_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.order_ref:
            raise DomainValidationException("Order reference is required", field="order_ref")
        self._validate_amount()
        self.currency = (self.currency or "").upper()
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise OrderValidationException(f"Invalid currency: {self.currency}", field="currency")
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.verified_at = _ensure_utc(self.verified_at)
        self.closed_at = _ensure_utc(self.closed_at)

    def _validate_amount(self) -> None:
        if not isinstance(self.amount, int) or isinstance(self.amount, bool) or self.amount <= 0:
            raise DomainValidationException(f"Order amount must be a positive integer: {self.amount}", field="amount")
        if self.line_items and sum(item.subtotal for item in self.line_items) != self.amount:
            raise DomainValidationException("Order amount does not match its line items", field="amount")

    @classmethod
    def place(
        cls,
        *,
        order_ref: str,
        line_items: List[LineItem],
        buyer: Buyer,
        currency: str,
        receipt: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> "Order":
        if not line_items:
            raise OrderValidationException("Cart is empty", field="items")
        now = datetime.now(timezone.utc)
        return cls(
            id=None,
            order_ref=order_ref,
            amount=sum(item.subtotal for item in line_items),
            currency=currency,
            line_items=list(line_items),
            buyer=buyer,
            status=OrderStatus.CREATED,
            receipt=receipt,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )

    def _require(self, *allowed: OrderStatus, target: OrderStatus) -> None:
        if self.status not in allowed:
            raise DomainValidationException(
                f"无法从状态 {self.status.value} 转换为 {target.value}",
                field="status",
            )

    def mark_awaiting_payment(self) -> None:
        self._require(OrderStatus.CREATED, target=OrderStatus.AWAITING_PAYMENT)
        self.status = OrderStatus.AWAITING_PAYMENT
        self.updated_at = datetime.now(timezone.utc)

    def mark_verified(self) -> None:
        """只有等待支付的订单才能被确认"""
        self._require(OrderStatus.AWAITING_PAYMENT, target=OrderStatus.VERIFIED)
        self.status = OrderStatus.VERIFIED
        self.verified_at = datetime.now(timezone.utc)
        self.updated_at = self.verified_at
        self.failure_reason = None

    def mark_failed(self, reason: str) -> None:
        self._require(OrderStatus.CREATED, OrderStatus.AWAITING_PAYMENT, target=OrderStatus.FAILED)
        self.status = OrderStatus.FAILED
        self.failure_reason = reason
        self.closed_at = datetime.now(timezone.utc)
        self.updated_at = self.closed_at

    def mark_cancelled(self, reason: str = "cancelled") -> None:
        self._require(OrderStatus.CREATED, OrderStatus.AWAITING_PAYMENT, target=OrderStatus.CANCELLED)
        self.status = OrderStatus.CANCELLED
        self.failure_reason = reason
        self.closed_at = datetime.now(timezone.utc)
        self.updated_at = self.closed_at

    def is_final_status(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def matches_amount(self, amount: Optional[int], currency: Optional[str]) -> bool:
        return amount == self.amount and (currency or "").upper() == self.currency


@dataclass
class PaymentAttempt:
    """
    支付尝试 - 每次处理方回调生成一条记录，订单终态后仍保留用于审计与幂等
    """

    id: Optional[int]
    order_ref: str
    processor_payment_ref: str
    signature: str
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    amount: Optional[int] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.created_at = _ensure_utc(self.created_at) or datetime.now(timezone.utc)
        if self.metadata is None:
            self.metadata = {}

    @classmethod
    def record(
        cls,
        *,
        order_ref: str,
        processor_payment_ref: str,
        signature: str,
        outcome: AttemptOutcome,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> "PaymentAttempt":
        return cls(
            id=None,
            order_ref=order_ref,
            processor_payment_ref=processor_payment_ref,
            signature=signature,
            outcome=outcome,
            amount=amount,
            currency=currency.upper() if currency else None,
            failure_reason=failure_reason,
        )

    @property
    def is_confirmed(self) -> bool:
        return self.outcome == AttemptOutcome.CONFIRMED
