"""
Order Service port used by the client-side checkout orchestrator.

Implementations: HTTP (`infrastructure.external.api_clients.orders`) and
in-process (`application.checkout.local`).
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.orders import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)


class OrderServiceError(Exception):
    """Order Service answered with `{success: false, code, ...}`."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    @property
    def field(self) -> Optional[str]:
        return self.details.get("field")


class OrderServiceUnavailable(Exception):
    """No usable answer from the Order Service (timeout, network, 5xx)."""


@runtime_checkable
class OrderServicePort(Protocol):
    async def create_order(
        self, request: CreateOrderRequest, idempotency_key: Optional[str] = None
    ) -> CreateOrderResponse: ...

    async def verify_payment(self, request: VerifyPaymentRequest) -> VerifyPaymentResponse: ...
