"""
Processor gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    ProcessorOrder,
    ProcessorOrderRequest,
    ProcessorPayment,
)


@runtime_checkable
class ProcessorGateway(Protocol):
    """Gateway protocol for the hosted-checkout payment processor.

    `key_id` is the public key handed to the checkout widget; `signing_secret`
    is the merchant secret the processor uses to sign checkout callbacks.
    """

    provider: str
    key_id: str
    signing_secret: str

    async def create_order(self, req: ProcessorOrderRequest) -> ProcessorOrder: ...

    async def fetch_order(self, order_id: str) -> ProcessorOrder: ...

    async def fetch_payment(self, payment_id: str) -> ProcessorPayment: ...

    async def aclose(self) -> None: ...
