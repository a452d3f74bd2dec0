"""
Base processor client implementing shared concerns: retry, logging, mapping.

Concrete providers subclass and implement the provider-specific calls.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import (
    ProcessorOrder,
    ProcessorOrderRequest,
    ProcessorPayment,
)
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

T = TypeVar("T")


class BaseProcessorClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        key_id: str,
        signing_secret: str,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self.key_id = key_id
        self.signing_secret = signing_secret
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    @property
    def total_timeout(self) -> float:
        return float(self._timeouts_cfg["total"])

    async def aclose(self) -> None:
        """Release provider resources (no-op by default)."""

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(PaymentRecoverableError),
            reraise=True,
        ):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover

    # Default implementations raise to force override where needed
    async def create_order(self, req: ProcessorOrderRequest) -> ProcessorOrder:
        raise NotImplementedError

    async def fetch_order(self, order_id: str) -> ProcessorOrder:
        raise NotImplementedError

    async def fetch_payment(self, payment_id: str) -> ProcessorPayment:
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
