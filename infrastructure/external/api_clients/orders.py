"""
Order Service HTTP客户端 - 结账编排器通过它访问 /api/orders
"""
from typing import Optional

import httpx

from application.dtos.orders import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from application.ports.order_service import OrderServiceError, OrderServiceUnavailable
from core.logging_config import get_logger
from core.settings import payment_settings
from .base import APIConnectionError, APIError, BaseAPIClient

logger = get_logger(__name__)


class HttpOrderServiceClient(BaseAPIClient):
    """实现 OrderServicePort；create 携带 Idempotency-Key 以便安全重试"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = payment_settings.checkout
        super().__init__(
            base_url=base_url or cfg.api_url,
            timeout=timeout if timeout is not None else cfg.api_timeout,
            max_retries=max_retries if max_retries is not None else cfg.api_max_retries,
            retry_delay=retry_delay,
            transport=transport,
        )

    async def create_order(
        self, request: CreateOrderRequest, idempotency_key: Optional[str] = None
    ) -> CreateOrderResponse:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            return await self.post_typed(
                "/api/orders/create", CreateOrderResponse, json_data=request, headers=headers
            )
        except APIError as exc:
            raise self._translate(exc) from exc

    async def verify_payment(self, request: VerifyPaymentRequest) -> VerifyPaymentResponse:
        try:
            return await self.post_typed("/api/orders/verify", VerifyPaymentResponse, json_data=request)
        except APIError as exc:
            raise self._translate(exc) from exc

    def _translate(self, exc: APIError) -> Exception:
        body = exc.response.data if exc.response is not None else None
        # 5xx（处理方故障、服务繁忙）与无结构响应一律视为暂时不可用
        server_side = exc.status_code is not None and exc.status_code >= 500
        if isinstance(exc, APIConnectionError) or server_side or not isinstance(body, dict) or "code" not in body:
            logger.warning("order_service_unavailable", error=exc.message, status_code=exc.status_code)
            return OrderServiceUnavailable(exc.message)
        details = body.get("details") or {}
        return OrderServiceError(
            code=str(body["code"]),
            message=str(body.get("error") or exc.message),
            status_code=exc.status_code,
            details=details if isinstance(details, dict) else {"details": details},
        )
