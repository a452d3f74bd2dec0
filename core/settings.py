"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings; every key is read with the
`PAYMENT__` prefix, e.g. `PAYMENT__RAZORPAY__KEY_SECRET`.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class RazorpaySettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None


class FakeProcessorSettings(BaseModel):
    """In-memory processor used in development and tests."""
    key_id: str = "rzp_test_fake"
    key_secret: str = "fake_secret"


class CheckoutSettings(BaseModel):
    """Client-side checkout (orchestrator) settings."""
    api_url: str = "http://localhost:5000"
    api_timeout: float = 15.0
    api_max_retries: int = 2
    script_url: str = "https://checkout.razorpay.com/v1/checkout.js"
    script_timeout: float = 10.0
    description: str = "Payment for your order"
    theme_color: str = "#8B5CF6"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="razorpay")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)

    razorpay: RazorpaySettings = Field(default_factory=RazorpaySettings)
    fake: FakeProcessorSettings = Field(default_factory=FakeProcessorSettings)
    checkout: CheckoutSettings = Field(default_factory=CheckoutSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
