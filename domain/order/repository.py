"""
订单仓储接口 - 定义订单与支付尝试数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from .entity import Order, OrderStatus, PaymentAttempt


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（含订单行）"""
        pass

    @abstractmethod
    async def get_by_ref(self, order_ref: str) -> Optional[Order]:
        """根据订单引用获取订单"""
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Order]:
        """根据客户端幂等键获取订单"""
        pass

    @abstractmethod
    async def transition(self, order: Order, expected: OrderStatus) -> bool:
        """比较并交换状态：仅当库中状态仍为 expected 时写入，返回是否成功"""
        pass

    @abstractmethod
    async def list_stale(
        self,
        status: OrderStatus,
        created_before: datetime,
        limit: int = 100,
        after: Optional[Tuple[datetime, str]] = None,
    ) -> List[Order]:
        """获取指定状态且创建时间早于 created_before 的订单；after 为翻页游标 (created_at, order_ref)"""
        pass


class PaymentAttemptRepository(ABC):
    """支付尝试仓储抽象接口"""

    @abstractmethod
    async def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        """记录一次支付尝试"""
        pass

    @abstractmethod
    async def get_confirmed(self, order_ref: str) -> Optional[PaymentAttempt]:
        """获取订单已确认的支付尝试（最多一条）"""
        pass

    @abstractmethod
    async def list_by_order(self, order_ref: str) -> List[PaymentAttempt]:
        """按时间顺序获取订单的全部支付尝试"""
        pass
