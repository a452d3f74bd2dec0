"""
Order lifecycle codes (21xxx) shared by the domain and the HTTP layer.
"""
from __future__ import annotations

from enum import IntEnum


class OrderCode(IntEnum):
    ORDER_VALIDATION_ERROR = 21000
    CATALOG_ERROR = 21001
    UNKNOWN_ORDER = 21002
    VERIFICATION_FAILED = 21003
    AMOUNT_MISMATCH = 21004
    ORDER_NOT_PAYABLE = 21005


# Codes whose failures may mean money moved without a confirmed order.
SECURITY_SENSITIVE_CODES = frozenset(
    {
        OrderCode.UNKNOWN_ORDER,
        OrderCode.VERIFICATION_FAILED,
        OrderCode.AMOUNT_MISMATCH,
    }
)
