"""
Razorpay Orders/Payments adapter using the official razorpay-python SDK.

Notes on SDK usage:
- `razorpay.Client(auth=(key_id, key_secret))` exposes resource helpers such
  as `client.order.create(data=...)`, `client.order.fetch(id)` and
  `client.payment.fetch(id)`. Calls are synchronous (requests based), so they
  run in a worker thread via `asyncio.to_thread` and are bounded by the total
  timeout.
- Errors surface as `razorpay.errors.BadRequestError` (4xx), `ServerError`
  (5xx) and `GatewayError`; transport failures come from requests, whose
  exceptions derive from OSError.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError

from application.dtos.payments import (
    ProcessorOrder,
    ProcessorOrderRequest,
    ProcessorPayment,
)
from infrastructure.external.payments.base import BaseProcessorClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentTimeoutError,
)
from core.config import settings
from core.settings import payment_settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RazorpayClient(BaseProcessorClient):
    provider = "razorpay"

    def __init__(self, sdk_client: Any = None):
        cfg = payment_settings.razorpay
        if not cfg.key_id or not cfg.key_secret:
            raise RuntimeError("PAYMENT__RAZORPAY__KEY_ID / PAYMENT__RAZORPAY__KEY_SECRET not configured")
        super().__init__(
            key_id=cfg.key_id,
            signing_secret=cfg.key_secret,
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        if sdk_client is None:
            sdk_client = razorpay.Client(auth=(cfg.key_id, cfg.key_secret))
            sdk_client.set_app_details({"title": settings.PROJECT_NAME, "version": settings.VERSION})
        self._sdk = sdk_client

    async def _call(self, op: str, fn: Callable[[], dict]) -> dict:
        """Run one SDK call off the event loop and map its errors."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.total_timeout)
        except asyncio.TimeoutError as e:
            raise PaymentTimeoutError(f"Razorpay {op} timed out", provider=self.provider) from e
        except BadRequestError as e:
            raise PaymentProviderError(
                str(e) or f"Razorpay rejected {op}",
                provider=self.provider,
                provider_code="BAD_REQUEST_ERROR",
                details={"operation": op},
            ) from e
        except (ServerError, GatewayError) as e:
            raise PaymentRecoverableError(
                str(e) or f"Razorpay {op} failed",
                provider=self.provider,
                provider_code=type(e).__name__,
                details={"operation": op},
            ) from e
        except OSError as e:
            raise PaymentRecoverableError(
                f"Razorpay {op} network error",
                provider=self.provider,
                provider_code="NETWORK_ERROR",
                details={"operation": op, "error": str(e)},
            ) from e

    async def create_order(self, req: ProcessorOrderRequest) -> ProcessorOrder:
        payload = {
            "amount": req.amount,
            "currency": req.currency,
            "receipt": req.receipt,
            "notes": req.notes or {},
        }

        async def _do() -> dict:
            return await self._call("order.create", lambda: self._sdk.order.create(data=payload))

        data = await self._retry(_do)
        order = self._to_order(data)
        self._log("processor_order_created", order_id=order.id, amount=order.amount, currency=order.currency)
        return order

    async def fetch_order(self, order_id: str) -> ProcessorOrder:
        async def _do() -> dict:
            return await self._call("order.fetch", lambda: self._sdk.order.fetch(order_id))

        return self._to_order(await self._retry(_do))

    async def fetch_payment(self, payment_id: str) -> ProcessorPayment:
        async def _do() -> dict:
            return await self._call("payment.fetch", lambda: self._sdk.payment.fetch(payment_id))

        data = await self._retry(_do)
        payment = ProcessorPayment(
            id=str(data["id"]),
            order_id=data.get("order_id"),
            amount=data.get("amount"),
            currency=data.get("currency"),
            status=str(data.get("status", "")),
            provider=self.provider,
            error_description=data.get("error_description"),
        )
        self._log(
            "processor_payment_fetched",
            payment_id=payment.id,
            order_id=payment.order_id,
            status=payment.status,
        )
        return payment

    def _to_order(self, data: dict) -> ProcessorOrder:
        try:
            return ProcessorOrder(
                id=str(data["id"]),
                amount=int(data["amount"]),
                currency=str(data["currency"]),
                status=str(data.get("status", "created")),
                receipt=data.get("receipt"),
                provider=self.provider,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentProviderError(
                "Unexpected Razorpay order payload",
                provider=self.provider,
                details={"keys": sorted(data) if isinstance(data, dict) else None},
            ) from e
