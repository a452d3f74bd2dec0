"""
Order DTOs (Pydantic v2) for the checkout HTTP surface and service results.

Wire field names follow the storefront contract (camelCase plus the
processor's `razorpay_*` callback keys); Python attributes stay snake_case.
Client prices and totals are major units; everything the server returns is
in minor units.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrderItemIn(_WireModel):
    product_id: str = Field(alias="productId")
    name: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: int = 1

    @field_validator("product_id", mode="before")
    @classmethod
    def _coerce_product_id(cls, v: Any) -> str:
        return "" if v is None else str(v)


class AddressIn(_WireModel):
    country: str = ""
    state: str = ""
    city: str = ""
    zip_code: str = Field(default="", alias="zipCode")
    address: str = ""


class CustomerIn(_WireModel):
    # Presence is checked by the order service so every missing field
    # surfaces as the same field-level ValidationError.
    name: str = ""
    email: str = ""
    phone: str = ""
    address: Optional[AddressIn] = None

    @field_validator("name", "email", "phone", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("address", mode="before")
    @classmethod
    def _coerce_address(cls, v: Any) -> Any:
        # the storefront may send the street line as a plain string
        if isinstance(v, str):
            return {"address": v}
        return v


class CreateOrderRequest(_WireModel):
    amount: Optional[Decimal] = None
    currency: str = "INR"
    items: list[OrderItemIn] = Field(default_factory=list)
    customer: CustomerIn = Field(default_factory=CustomerIn)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return (v or "").strip().upper()


class OrderSummary(_WireModel):
    id: str
    amount: int
    currency: str


class CreatedOrder(BaseModel):
    """Result of createOrder: opaque order reference plus widget handshake key."""
    order_ref: str
    amount: int
    currency: str
    key: str
    receipt: Optional[str] = None
    status: str


class CreateOrderResponse(_WireModel):
    success: bool = True
    order_id: str = Field(alias="orderId")
    order: OrderSummary
    key: str

    @classmethod
    def from_created(cls, created: CreatedOrder) -> "CreateOrderResponse":
        return cls(
            order_id=created.order_ref,
            order=OrderSummary(id=created.order_ref, amount=created.amount, currency=created.currency),
            key=created.key,
        )


class VerifyPaymentRequest(_WireModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class VerificationResult(BaseModel):
    order_ref: str
    processor_payment_ref: str
    amount: int
    currency: str
    status: str
    already_verified: bool = False


class VerifyPaymentResponse(_WireModel):
    success: bool = True
    order_id: Optional[str] = Field(default=None, alias="orderId")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    amount: Optional[int] = None
    currency: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerifyPaymentResponse":
        return cls(
            order_id=result.order_ref,
            payment_id=result.processor_payment_ref,
            amount=result.amount,
            currency=result.currency,
        )


class CancelOrderRequest(_WireModel):
    order_id: str = Field(alias="orderId")


class OrderItemView(_WireModel):
    product_id: str = Field(alias="productId")
    name: str
    unit_price: int = Field(alias="unitPrice")
    quantity: int


class PaymentAttemptView(_WireModel):
    payment_id: str = Field(alias="paymentId")
    outcome: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class OrderView(_WireModel):
    id: str
    status: str
    amount: int
    currency: str
    items: list[OrderItemView] = Field(default_factory=list)
    attempts: list[PaymentAttemptView] = Field(default_factory=list)
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    verified_at: Optional[datetime] = Field(default=None, alias="verifiedAt")


class OrderErrorResponse(_WireModel):
    success: bool = False
    error: str
    code: str
    details: Optional[dict[str, Any]] = None
