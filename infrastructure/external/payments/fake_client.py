"""
Deterministic in-memory processor for development and tests.

Behaves like the hosted-checkout processor: it creates orders, signs
checkout callbacks with the configured secret and reports payments that a
test (or the fake checkout widget) has registered.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from application.dtos.payments import (
    ProcessorOrder,
    ProcessorOrderRequest,
    ProcessorPayment,
)
from domain.payment.signature import compute_signature
from infrastructure.external.payments.base import BaseProcessorClient
from infrastructure.external.payments.exceptions import PaymentProviderError
from core.settings import payment_settings


@dataclass
class _FakeOrder:
    id: str
    amount: int
    currency: str
    receipt: Optional[str]
    status: str = "created"


class FakeProcessorClient(BaseProcessorClient):
    provider = "fake"

    def __init__(
        self,
        *,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        order_id_prefix: str = "order_fake",
    ) -> None:
        super().__init__(
            key_id=key_id or payment_settings.fake.key_id,
            signing_secret=key_secret or payment_settings.fake.key_secret,
            retry={"max": 0, "base": 0.0},
        )
        self._prefix = order_id_prefix
        self._order_seq = itertools.count(1)
        self._payment_seq = itertools.count(1)
        self.orders: Dict[str, _FakeOrder] = {}
        self.payments: Dict[str, ProcessorPayment] = {}
        self.created_requests: list[ProcessorOrderRequest] = []
        self.next_order_id: Optional[str] = None
        self.fail_next_create: Optional[Exception] = None

    async def create_order(self, req: ProcessorOrderRequest) -> ProcessorOrder:
        if self.fail_next_create is not None:
            exc, self.fail_next_create = self.fail_next_create, None
            raise exc
        self.created_requests.append(req)
        order_id = self.next_order_id or f"{self._prefix}_{next(self._order_seq):04d}"
        self.next_order_id = None
        if order_id in self.orders:
            raise PaymentProviderError("duplicate order id", provider=self.provider, provider_code="BAD_REQUEST_ERROR")
        self.orders[order_id] = _FakeOrder(order_id, req.amount, req.currency, req.receipt)
        self._log("processor_order_created", order_id=order_id, amount=req.amount, currency=req.currency)
        return self._view(self.orders[order_id])

    async def fetch_order(self, order_id: str) -> ProcessorOrder:
        order = self.orders.get(order_id)
        if order is None:
            raise PaymentProviderError(
                "The id provided does not exist",
                provider=self.provider,
                provider_code="BAD_REQUEST_ERROR",
                details={"order_id": order_id},
            )
        return self._view(order)

    async def fetch_payment(self, payment_id: str) -> ProcessorPayment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise PaymentProviderError(
                "The id provided does not exist",
                provider=self.provider,
                provider_code="BAD_REQUEST_ERROR",
                details={"payment_id": payment_id},
            )
        return payment

    # ----- test/dev helpers -----

    def sign(self, order_id: str, payment_id: str) -> str:
        return compute_signature(self.signing_secret, order_id, payment_id)

    def register_payment(
        self,
        order_id: str,
        *,
        payment_id: Optional[str] = None,
        status: str = "captured",
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> ProcessorPayment:
        """Record a payment against an order; amount/currency default to the order's."""
        order = self.orders.get(order_id)
        payment = ProcessorPayment(
            id=payment_id or f"pay_fake_{next(self._payment_seq):04d}",
            order_id=order_id,
            amount=amount if amount is not None else (order.amount if order else None),
            currency=currency or (order.currency if order else None),
            status=status,
            provider=self.provider,
            error_description=error_description,
        )
        self.payments[payment.id] = payment
        if order is not None:
            if self._map_status(status) == "succeeded":
                order.status = "paid"
            elif order.status == "created":
                order.status = "attempted"
        return payment

    def complete_checkout(self, order_id: str, **kwargs) -> Tuple[str, str]:
        """Simulate a successful widget checkout; returns (payment_id, signature)."""
        payment = self.register_payment(order_id, **kwargs)
        return payment.id, self.sign(order_id, payment.id)

    def _view(self, order: _FakeOrder) -> ProcessorOrder:
        return ProcessorOrder(
            id=order.id,
            amount=order.amount,
            currency=order.currency,
            status=order.status,
            receipt=order.receipt,
            provider=self.provider,
        )
