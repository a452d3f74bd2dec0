"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel, PaymentAttemptModel
from .product import ProductModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "PaymentAttemptModel",
    "ProductModel",
]
