"""
Payment processor codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    TIMEOUT = 60003


# Provider→internal status mapping for payments and processor orders
PROVIDER_STATUS_TO_INTERNAL = {
    "razorpay": {
        # Per payment.status
        "created": "pending",
        "authorized": "succeeded",
        "captured": "succeeded",
        "failed": "failed",
        "refunded": "refunded",
        # Per order.status
        "attempted": "pending",
        "paid": "succeeded",
    },
    "fake": {
        "created": "pending",
        "authorized": "succeeded",
        "captured": "succeeded",
        "failed": "failed",
        "paid": "succeeded",
    },
}
