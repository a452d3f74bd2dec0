"""
Order API routes for the storefront checkout.

Thin layer over OrderApplicationService. Responses use the storefront's
`{success: ...}` shape; errors are rendered by core.exceptions.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from api.dependencies import get_order_service
from application.dtos.orders import (
    CancelOrderRequest,
    CreateOrderRequest,
    CreateOrderResponse,
    OrderErrorResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from application.services.order_service import OrderApplicationService
from core.logging_config import get_logger


router = APIRouter(prefix="/api/orders", tags=["Orders"])
logger = get_logger(__name__)

_ERROR_RESPONSES = {
    400: {"model": OrderErrorResponse, "description": "Validation or verification failure"},
    404: {"model": OrderErrorResponse, "description": "Unknown order"},
    409: {"model": OrderErrorResponse, "description": "Catalog changed or order closed"},
    422: {"model": OrderErrorResponse, "description": "Malformed request"},
    502: {"model": OrderErrorResponse, "description": "Payment processor error"},
}


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/create", summary="Create order", responses=_ERROR_RESPONSES)
async def create_order(
    payload: CreateOrderRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=128),
    service: OrderApplicationService = Depends(get_order_service),
):
    created = await service.create_order(payload, idempotency_key=idempotency_key)
    return _dump(CreateOrderResponse.from_created(created))


@router.post("/verify", summary="Verify payment", responses=_ERROR_RESPONSES)
async def verify_payment(
    payload: VerifyPaymentRequest,
    service: OrderApplicationService = Depends(get_order_service),
):
    result = await service.verify_payment(payload)
    return _dump(VerifyPaymentResponse.from_result(result))


@router.post("/cancel", summary="Cancel order", responses=_ERROR_RESPONSES)
async def cancel_order(
    payload: CancelOrderRequest,
    service: OrderApplicationService = Depends(get_order_service),
):
    view = await service.cancel_order(payload.order_id)
    return {"success": True, "orderId": view.id, "status": view.status}


@router.get("/{order_id}", summary="Get order status", responses=_ERROR_RESPONSES)
async def get_order(
    order_id: str,
    service: OrderApplicationService = Depends(get_order_service),
):
    view = await service.get_order(order_id)
    return {"success": True, "order": _dump(view)}
