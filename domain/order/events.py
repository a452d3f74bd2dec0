"""
Order domain events.

Dataclass events record order lifecycle facts for downstream handling
(e.g., fulfilment, alerts). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_ref: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderAwaitingPayment(OrderEvent):
    amount: int = 0
    currency: str = ""


@dataclass
class OrderVerified(OrderEvent):
    processor_payment_ref: str = ""
    amount: int = 0
    currency: str = ""


@dataclass
class OrderFailed(OrderEvent):
    reason: Optional[str] = None


@dataclass
class OrderCancelled(OrderEvent):
    reason: Optional[str] = None


@dataclass
class PaymentAttemptRejected(OrderEvent):
    processor_payment_ref: str = ""
    outcome: str = ""
