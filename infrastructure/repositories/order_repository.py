"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import OrderValidationException, VerificationFailedException
from domain.order.entity import (
    Address,
    AttemptOutcome,
    Buyer,
    LineItem,
    Order,
    OrderStatus,
    PaymentAttempt,
)
from domain.order.repository import OrderRepository, PaymentAttemptRepository
from infrastructure.models.order import OrderItemModel, OrderModel, PaymentAttemptModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        address = Address(**model.billing_address) if model.billing_address else None
        return Order(
            id=model.id,
            order_ref=model.order_ref,
            amount=model.amount,
            currency=model.currency,
            line_items=[
                LineItem(
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                )
                for item in model.items
            ],
            buyer=Buyer(
                name=model.buyer_name,
                email=model.buyer_email,
                phone=model.buyer_phone,
                address=address,
            ),
            status=OrderStatus(model.status),
            receipt=model.receipt,
            idempotency_key=model.idempotency_key,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            verified_at=model.verified_at,
            closed_at=model.closed_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        address = entity.buyer.address
        return OrderModel(
            id=entity.id,
            order_ref=entity.order_ref,
            receipt=entity.receipt,
            idempotency_key=entity.idempotency_key,
            amount=entity.amount,
            currency=entity.currency,
            buyer_name=entity.buyer.name,
            buyer_email=entity.buyer.email,
            buyer_phone=entity.buyer.phone,
            billing_address=vars(address).copy() if address else None,
            status=entity.status.value,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            verified_at=entity.verified_at,
            closed_at=entity.closed_at,
            items=[
                OrderItemModel(
                    position=index,
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                )
                for index, item in enumerate(entity.line_items)
            ],
        )

    async def create(self, order: Order) -> Order:
        """创建订单记录"""
        try:
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
            logger.info(
                "order_created",
                order_id=db_order.id,
                order_ref=db_order.order_ref,
                amount=db_order.amount,
                currency=db_order.currency,
            )
            order.id = db_order.id
            return order
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("order_create_conflict", order_ref=order.order_ref)
            raise OrderValidationException(
                "Order already exists",
                field="orderId",
                details={"order_id": order.order_ref},
            ) from e

    async def get_by_ref(self, order_ref: str) -> Optional[Order]:
        """根据订单引用获取订单"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.order_ref == order_ref)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Order]:
        """根据客户端幂等键获取订单"""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def transition(self, order: Order, expected: OrderStatus) -> bool:
        """比较并交换：库中状态仍为 expected 时才写入新状态"""
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.order_ref == order.order_ref,
                OrderModel.status == expected.value,
            )
            .values(
                status=order.status.value,
                failure_reason=order.failure_reason,
                verified_at=order.verified_at,
                closed_at=order.closed_at,
                updated_at=order.updated_at,
            )
        )
        swapped = result.rowcount == 1
        if swapped:
            logger.info(
                "order_status_changed",
                order_ref=order.order_ref,
                from_status=expected.value,
                to_status=order.status.value,
            )
        else:
            logger.info(
                "order_status_cas_lost",
                order_ref=order.order_ref,
                expected=expected.value,
                wanted=order.status.value,
            )
        return swapped

    async def list_stale(
        self,
        status: OrderStatus,
        created_before: datetime,
        limit: int = 100,
        after: Optional[Tuple[datetime, str]] = None,
    ) -> List[Order]:
        """获取过期未完成的订单，按 (created_at, order_ref) 升序；after 为上一页最后一条的键"""
        stmt = select(OrderModel).where(
            OrderModel.status == status.value,
            OrderModel.created_at < created_before,
        )
        if after is not None:
            after_created, after_ref = after
            stmt = stmt.where(
                or_(
                    OrderModel.created_at > after_created,
                    and_(OrderModel.created_at == after_created, OrderModel.order_ref > after_ref),
                )
            )
        result = await self.session.execute(
            stmt.order_by(OrderModel.created_at.asc(), OrderModel.order_ref.asc()).limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyPaymentAttemptRepository(PaymentAttemptRepository):
    """支付尝试仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentAttemptModel) -> PaymentAttempt:
        return PaymentAttempt(
            id=model.id,
            order_ref=model.order_ref,
            processor_payment_ref=model.processor_payment_ref,
            signature=model.signature,
            outcome=AttemptOutcome(model.outcome),
            amount=model.amount,
            currency=model.currency,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: PaymentAttempt) -> PaymentAttemptModel:
        return PaymentAttemptModel(
            order_ref=entity.order_ref,
            processor_payment_ref=entity.processor_payment_ref,
            signature=entity.signature,
            outcome=entity.outcome.value,
            confirmed_order_ref=entity.order_ref if entity.is_confirmed else None,
            amount=entity.amount,
            currency=entity.currency,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at,
            extra_metadata=entity.metadata,
        )

    async def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        """记录支付尝试；同一订单第二条 confirmed 记录会被唯一约束拒绝"""
        try:
            db_attempt = self._to_model(attempt)
            self.session.add(db_attempt)
            await self.session.flush()
            attempt.id = db_attempt.id
            logger.info(
                "payment_attempt_recorded",
                attempt_id=db_attempt.id,
                order_ref=attempt.order_ref,
                payment_ref=attempt.processor_payment_ref,
                outcome=attempt.outcome.value,
            )
            return attempt
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("payment_attempt_duplicate_confirmation", order_ref=attempt.order_ref)
            raise VerificationFailedException(attempt.order_ref, reason="already_confirmed") from e

    async def get_confirmed(self, order_ref: str) -> Optional[PaymentAttempt]:
        result = await self.session.execute(
            select(PaymentAttemptModel).where(PaymentAttemptModel.confirmed_order_ref == order_ref)
        )
        db_attempt = result.scalar_one_or_none()
        return self._to_entity(db_attempt) if db_attempt else None

    async def list_by_order(self, order_ref: str) -> List[PaymentAttempt]:
        result = await self.session.execute(
            select(PaymentAttemptModel)
            .where(PaymentAttemptModel.order_ref == order_ref)
            .order_by(PaymentAttemptModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
