"""
Processor callback signature verification.

The processor signs `order_ref|payment_ref` with the merchant key secret
(HMAC-SHA256, hex digest). Verification is pure and never raises.
"""
from __future__ import annotations

import hashlib
import hmac


def _canonical(order_ref: str, processor_payment_ref: str) -> bytes:
    return f"{order_ref}|{processor_payment_ref}".encode("utf-8")


def compute_signature(secret: str, order_ref: str, processor_payment_ref: str) -> str:
    return hmac.new(secret.encode("utf-8"), _canonical(order_ref, processor_payment_ref), hashlib.sha256).hexdigest()


def verify_signature(secret: str, order_ref: str, processor_payment_ref: str, signature: str) -> bool:
    if not all(isinstance(v, str) and v for v in (secret, order_ref, processor_payment_ref, signature)):
        return False
    try:
        expected = compute_signature(secret, order_ref, processor_payment_ref)
        # compare_digest on str requires ASCII; compare bytes instead
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
    except UnicodeEncodeError:
        return False
