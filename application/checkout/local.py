"""
In-process OrderServicePort: calls OrderApplicationService directly and
turns its exceptions into the same errors the HTTP client raises.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.orders import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from application.ports.order_service import OrderServiceError, OrderServiceUnavailable
from application.services.order_service import OrderApplicationService
from domain.common.exceptions import BusinessException
from infrastructure.external.payments.exceptions import PaymentRecoverableError


class LocalOrderServiceClient:
    def __init__(self, service: OrderApplicationService):
        self._service = service

    async def create_order(
        self, request: CreateOrderRequest, idempotency_key: Optional[str] = None
    ) -> CreateOrderResponse:
        try:
            created = await self._service.create_order(request, idempotency_key=idempotency_key)
        except PaymentRecoverableError as exc:
            raise OrderServiceUnavailable(exc.message) from exc
        except BusinessException as exc:
            raise self._translate(exc) from exc
        return CreateOrderResponse.from_created(created)

    async def verify_payment(self, request: VerifyPaymentRequest) -> VerifyPaymentResponse:
        try:
            result = await self._service.verify_payment(request)
        except PaymentRecoverableError as exc:
            raise OrderServiceUnavailable(exc.message) from exc
        except BusinessException as exc:
            raise self._translate(exc) from exc
        return VerifyPaymentResponse.from_result(result)

    @staticmethod
    def _translate(exc: BusinessException) -> OrderServiceError:
        details = dict(exc.details or {})
        if exc.field:
            details["field"] = exc.field
        return OrderServiceError(exc.error_type, exc.message, details=details)
