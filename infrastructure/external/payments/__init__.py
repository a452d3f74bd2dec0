"""
Factory for payment processor clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import ProcessorGateway


def get_payment_gateway(provider: Optional[str] = None) -> ProcessorGateway:
    name = (provider or payment_settings.default_provider).lower()
    if name in {"razorpay", "rzp"}:
        from .razorpay_client import RazorpayClient
        return RazorpayClient()
    if name == "fake":
        from .fake_client import FakeProcessorClient
        return FakeProcessorClient()
    raise ValueError(f"Unsupported payment provider: {name}")
