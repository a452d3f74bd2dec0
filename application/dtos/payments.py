"""
Processor DTOs (Pydantic v2) exchanged through the ProcessorGateway port.

Amounts are integers in minor currency units.
"""
from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator


class ProcessorOrderRequest(BaseModel):
    amount: int = Field(gt=0)
    currency: str
    receipt: str
    notes: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


class ProcessorOrder(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    receipt: Optional[str] = None
    provider: str


class ProcessorPayment(BaseModel):
    id: str
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: str
    provider: str
    error_description: Optional[str] = None
