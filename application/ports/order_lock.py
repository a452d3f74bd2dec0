"""
Per-order mutual exclusion port.

Implementations serialize work on one order reference; different orders
never block each other.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class OrderLock(Protocol):
    def hold(self, order_ref: str) -> AsyncContextManager[None]: ...
