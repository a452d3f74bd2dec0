"""
订单领域服务 - 处理定价、状态推进与支付尝试记录
"""
from dataclasses import dataclass
from typing import Dict, List, Optional

from .entity import (
    AttemptOutcome,
    Buyer,
    LineItem,
    Order,
    OrderStatus,
    PaymentAttempt,
)
from .events import (
    OrderAwaitingPayment,
    OrderCancelled,
    OrderFailed,
    OrderVerified,
    PaymentAttemptRejected,
)
from .repository import OrderRepository, PaymentAttemptRepository
from domain.catalog.entity import Product
from domain.catalog.repository import ProductRepository
from domain.common.exceptions import CatalogException, OrderValidationException


@dataclass
class CartLine:
    """客户端提交的购物车行；unit_price 为客户端声称的单价（最小单位），仅用于比对"""
    product_id: str
    quantity: int
    unit_price: Optional[int] = None
    name: Optional[str] = None


class OrderDomainService:
    """
    订单领域服务 - 编排订单业务规则

    职责：
    1. 以服务端商品目录重新定价，拒绝客户端价格
    2. 订单状态推进（比较并交换，防止并发回调重复确认）
    3. 记录支付尝试并产生领域事件
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        attempt_repository: PaymentAttemptRepository,
        product_repository: Optional[ProductRepository] = None,
    ):
        self.order_repository = order_repository
        self.attempt_repository = attempt_repository
        self.product_repository = product_repository
        self.events: List = []  # 领域事件收集

    async def price_cart(self, lines: List[CartLine], currency: str) -> List[LineItem]:
        """
        按目录价格生成订单行

        业务规则：
        1. 购物车不能为空，数量至少为 1
        2. 商品必须存在且在售，币种与订单一致
        3. 客户端单价与目录不一致视为价格变化（需刷新购物车）
        """
        if not lines:
            raise OrderValidationException("Cart is empty", field="items")
        if self.product_repository is None:
            raise RuntimeError("product repository is required for pricing")

        for index, line in enumerate(lines):
            if line.quantity < 1:
                raise OrderValidationException(
                    f"Quantity must be at least 1 for product {line.product_id}",
                    field=f"items.{index}.quantity",
                )

        products: Dict[str, Product] = await self.product_repository.get_many(
            [line.product_id for line in lines]
        )
        items: List[LineItem] = []
        for line in lines:
            product = products.get(line.product_id)
            if product is None or not product.active:
                raise CatalogException(
                    f"Product {line.product_id} is no longer available",
                    product_id=line.product_id,
                )
            if product.currency != currency.upper():
                raise CatalogException(
                    f"Product {line.product_id} is not sold in {currency.upper()}",
                    product_id=line.product_id,
                )
            if line.unit_price is not None and line.unit_price != product.unit_price:
                raise CatalogException(
                    f"Price of {product.name} has changed, please refresh your cart",
                    product_id=line.product_id,
                    details={"submitted_price": line.unit_price, "current_price": product.unit_price},
                )
            items.append(
                LineItem(
                    product_id=product.product_id,
                    name=product.name,
                    unit_price=product.unit_price,
                    quantity=line.quantity,
                )
            )
        return items

    async def place_order(
        self,
        *,
        order_ref: str,
        line_items: List[LineItem],
        buyer: Buyer,
        currency: str,
        receipt: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Order:
        """持久化 created 订单并推进到 awaiting_payment（同一事务内）"""
        order = Order.place(
            order_ref=order_ref,
            line_items=line_items,
            buyer=buyer,
            currency=currency,
            receipt=receipt,
            idempotency_key=idempotency_key,
        )
        order = await self.order_repository.create(order)
        order.mark_awaiting_payment()
        await self.order_repository.transition(order, expected=OrderStatus.CREATED)
        self.events.append(
            OrderAwaitingPayment(order_ref=order.order_ref, amount=order.amount, currency=order.currency)
        )
        return order

    async def reject_attempt(self, attempt: PaymentAttempt) -> PaymentAttempt:
        """记录未通过校验的支付尝试，订单状态不变"""
        saved = await self.attempt_repository.add(attempt)
        self.events.append(
            PaymentAttemptRejected(
                order_ref=attempt.order_ref,
                processor_payment_ref=attempt.processor_payment_ref,
                outcome=attempt.outcome.value,
            )
        )
        return saved

    async def confirm_payment(self, order: Order, attempt: PaymentAttempt) -> bool:
        """
        确认支付：awaiting_payment -> verified，并记录 confirmed 尝试

        返回 False 表示状态已被并发请求改变（调用方需重新读取订单）
        """
        order.mark_verified()
        if not await self.order_repository.transition(order, expected=OrderStatus.AWAITING_PAYMENT):
            return False
        attempt.outcome = AttemptOutcome.CONFIRMED
        await self.attempt_repository.add(attempt)
        self.events.append(
            OrderVerified(
                order_ref=order.order_ref,
                processor_payment_ref=attempt.processor_payment_ref,
                amount=order.amount,
                currency=order.currency,
            )
        )
        return True

    async def fail_order(self, order: Order, reason: str) -> bool:
        expected = order.status
        order.mark_failed(reason)
        if not await self.order_repository.transition(order, expected=expected):
            return False
        self.events.append(OrderFailed(order_ref=order.order_ref, reason=reason))
        return True

    async def cancel_order(self, order: Order, reason: str = "cancelled") -> bool:
        expected = order.status
        order.mark_cancelled(reason)
        if not await self.order_repository.transition(order, expected=expected):
            return False
        self.events.append(OrderCancelled(order_ref=order.order_ref, reason=reason))
        return True

    def get_domain_events(self) -> List:
        return list(self.events)

    def clear_events(self) -> None:
        self.events.clear()
