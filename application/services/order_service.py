"""
订单应用服务（application/services）- 编排下单、支付校验、取消与过期清理

所有会改变订单状态的操作都在订单锁内执行；失败的校验尝试要先提交再抛出，
保证审计记录不会随事务回滚丢失。
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from application.dtos.orders import (
    CreateOrderRequest,
    CreatedOrder,
    OrderItemView,
    OrderView,
    PaymentAttemptView,
    VerificationResult,
    VerifyPaymentRequest,
)
from application.dtos.payments import ProcessorOrder, ProcessorOrderRequest
from application.ports.order_lock import OrderLock
from application.ports.payment_gateway import ProcessorGateway
from core.config import StoreSettings, settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    AmountMismatchException,
    CatalogException,
    OrderNotPayableException,
    OrderServiceException,
    OrderValidationException,
    ServiceBusyException,
    UnknownOrderException,
    VerificationFailedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import (
    Address,
    AttemptOutcome,
    Buyer,
    Order,
    OrderStatus,
    PaymentAttempt,
)
from domain.order.money import to_minor_units
from domain.order.service import CartLine, OrderDomainService
from domain.payment.signature import verify_signature
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError


logger = get_logger(__name__)

# 处理方认定为已付款的支付状态
SETTLED_PAYMENT_STATUSES = frozenset({"authorized", "captured"})


class OrderApplicationService:
    """订单应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: ProcessorGateway,
        locks: OrderLock,
        store: Optional[StoreSettings] = None,
    ):
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._locks = locks
        self._store = store or settings.store

    # ------------------------------------------------------------------
    # createOrder
    # ------------------------------------------------------------------

    async def create_order(
        self,
        request: CreateOrderRequest,
        idempotency_key: Optional[str] = None,
    ) -> CreatedOrder:
        """
        创建订单

        1. 校验买家与购物车（任何处理方调用之前）
        2. 以目录价格重新定价，客户端价格只用于比对
        3. 创建处理方订单，持久化并推进到 awaiting_payment
        """
        if idempotency_key:
            async with self._locks.hold(f"create:{idempotency_key}"):
                existing = await self._find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    logger.info("order_create_replayed", order_ref=existing.order_ref)
                    return self._to_created(existing)
                return await self._create_order(request, idempotency_key)
        return await self._create_order(request, None)

    async def _create_order(self, request: CreateOrderRequest, idempotency_key: Optional[str]) -> CreatedOrder:
        buyer = self._build_buyer(request)
        currency = self._check_currency(request.currency)
        lines = self._build_cart_lines(request, currency)

        async with self._uow_factory(readonly=True) as uow:
            domain_service = OrderDomainService(
                uow.order_repository, uow.attempt_repository, uow.product_repository
            )
            line_items = await domain_service.price_cart(lines, currency)
        total = sum(item.subtotal for item in line_items)

        if request.amount is not None:
            submitted = to_minor_units(request.amount, currency, field="amount")
            if submitted != total:
                raise CatalogException(
                    "Cart total has changed, please refresh your cart",
                    details={"submitted_amount": submitted, "current_amount": total},
                )

        receipt = f"rcpt_{uuid.uuid4().hex[:20]}"
        processor_order = await self._gateway.create_order(
            ProcessorOrderRequest(
                amount=total,
                currency=currency,
                receipt=receipt,
                notes={"merchant": self._store.merchant_name, "customer_email": buyer.email},
            )
        )
        self._check_processor_order(processor_order, total, currency)

        async with self._uow_factory() as uow:
            domain_service = OrderDomainService(uow.order_repository, uow.attempt_repository)
            order = await domain_service.place_order(
                order_ref=processor_order.id,
                line_items=line_items,
                buyer=buyer,
                currency=currency,
                receipt=receipt,
                idempotency_key=idempotency_key,
            )
            self._publish(domain_service)

        logger.info(
            "checkout_order_created",
            order_ref=order.order_ref,
            amount=order.amount,
            currency=order.currency,
            items=len(order.line_items),
        )
        return self._to_created(order)

    def _build_buyer(self, request: CreateOrderRequest) -> Buyer:
        customer = request.customer
        address = None
        if customer.address is not None:
            address = Address(
                country=customer.address.country,
                state=customer.address.state,
                city=customer.address.city,
                zip_code=customer.address.zip_code,
                address=customer.address.address,
            )
        return Buyer(name=customer.name, email=customer.email, phone=customer.phone, address=address)

    def _check_currency(self, currency: str) -> str:
        if currency != self._store.currency:
            raise OrderValidationException(
                f"Currency {currency} is not supported, expected {self._store.currency}",
                field="currency",
            )
        return currency

    def _build_cart_lines(self, request: CreateOrderRequest, currency: str) -> List[CartLine]:
        lines: List[CartLine] = []
        for index, item in enumerate(request.items):
            unit_price = None
            if item.price is not None:
                unit_price = to_minor_units(item.price, currency, field=f"items.{index}.price")
            lines.append(
                CartLine(product_id=item.product_id, quantity=item.quantity, unit_price=unit_price, name=item.name)
            )
        return lines

    def _check_processor_order(self, processor_order: ProcessorOrder, amount: int, currency: str) -> None:
        if processor_order.amount != amount or processor_order.currency.upper() != currency:
            raise PaymentProviderError(
                "Processor order does not match the requested amount",
                provider=self._gateway.provider,
                details={"order_id": processor_order.id, "amount": processor_order.amount},
            )

    async def _find_by_idempotency_key(self, idempotency_key: str) -> Optional[Order]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.order_repository.get_by_idempotency_key(idempotency_key)

    def _to_created(self, order: Order) -> CreatedOrder:
        return CreatedOrder(
            order_ref=order.order_ref,
            amount=order.amount,
            currency=order.currency,
            key=self._gateway.key_id,
            receipt=order.receipt,
            status=order.status.value,
        )

    # ------------------------------------------------------------------
    # verifyPayment
    # ------------------------------------------------------------------

    async def verify_payment(self, request: VerifyPaymentRequest) -> VerificationResult:
        """校验处理方回调；同一订单的并发校验串行执行"""
        order_ref = request.razorpay_order_id
        async with self._locks.hold(order_ref):
            return await self._verify_locked(request)

    async def _verify_locked(self, request: VerifyPaymentRequest) -> VerificationResult:
        order_ref = request.razorpay_order_id
        payment_ref = request.razorpay_payment_id
        failure: Optional[OrderServiceException] = None
        result: Optional[VerificationResult] = None

        async with self._uow_factory() as uow:
            domain_service = OrderDomainService(uow.order_repository, uow.attempt_repository)
            order = await uow.order_repository.get_by_ref(order_ref)
            if order is None:
                raise UnknownOrderException(order_ref)
            if order.status == OrderStatus.VERIFIED:
                return await self._verified_result(uow, order, payment_ref)
            if order.status != OrderStatus.AWAITING_PAYMENT:
                raise VerificationFailedException(order_ref, reason="order_closed")

            if not verify_signature(self._gateway.signing_secret, order_ref, payment_ref, request.razorpay_signature):
                await domain_service.reject_attempt(
                    PaymentAttempt.record(
                        order_ref=order_ref,
                        processor_payment_ref=payment_ref,
                        signature=request.razorpay_signature,
                        outcome=AttemptOutcome.SIGNATURE_INVALID,
                        failure_reason="signature_mismatch",
                    )
                )
                failure = VerificationFailedException(order_ref, reason="signature_invalid")
            else:
                payment = await self._gateway.fetch_payment(payment_ref)
                attempt = PaymentAttempt.record(
                    order_ref=order_ref,
                    processor_payment_ref=payment_ref,
                    signature=request.razorpay_signature,
                    outcome=AttemptOutcome.PENDING,
                    amount=payment.amount,
                    currency=payment.currency,
                )
                if payment.order_id != order_ref or payment.status not in SETTLED_PAYMENT_STATUSES:
                    attempt.outcome = AttemptOutcome.PROCESSOR_REPORTED_FAILURE
                    attempt.failure_reason = payment.error_description or f"payment_status_{payment.status}"
                    if payment.order_id != order_ref:
                        attempt.failure_reason = "payment_order_mismatch"
                    await domain_service.reject_attempt(attempt)
                    failure = VerificationFailedException(order_ref, reason=attempt.failure_reason)
                elif not order.matches_amount(payment.amount, payment.currency):
                    attempt.outcome = AttemptOutcome.AMOUNT_MISMATCH
                    attempt.failure_reason = "amount_mismatch"
                    await domain_service.reject_attempt(attempt)
                    await domain_service.fail_order(order, "amount_mismatch")
                    failure = AmountMismatchException(
                        order_ref,
                        expected=(order.amount, order.currency),
                        actual=(payment.amount, payment.currency),
                    )
                elif await domain_service.confirm_payment(order, attempt):
                    result = VerificationResult(
                        order_ref=order_ref,
                        processor_payment_ref=payment_ref,
                        amount=order.amount,
                        currency=order.currency,
                        status=order.status.value,
                    )
                else:
                    # 状态已被其他进程推进：重新读取
                    current = await uow.order_repository.get_by_ref(order_ref)
                    if current is not None and current.status == OrderStatus.VERIFIED:
                        result = await self._verified_result(uow, current, payment_ref)
                    else:
                        failure = VerificationFailedException(order_ref, reason="order_closed")
            self._publish(domain_service)

        if failure is not None:
            logger.warning(
                "payment_verification_rejected",
                order_ref=order_ref,
                payment_ref=payment_ref,
                error_type=failure.error_type,
                details=failure.details,
                security_sensitive=True,
            )
            raise failure

        logger.info("payment_verified", order_ref=order_ref, payment_ref=payment_ref, amount=result.amount)
        return result

    async def _verified_result(
        self, uow: AbstractUnitOfWork, order: Order, payment_ref: str
    ) -> VerificationResult:
        confirmed = await uow.attempt_repository.get_confirmed(order.order_ref)
        logger.info("payment_already_verified", order_ref=order.order_ref, payment_ref=payment_ref)
        return VerificationResult(
            order_ref=order.order_ref,
            processor_payment_ref=confirmed.processor_payment_ref if confirmed else payment_ref,
            amount=order.amount,
            currency=order.currency,
            status=order.status.value,
            already_verified=True,
        )

    # ------------------------------------------------------------------
    # cancel / read
    # ------------------------------------------------------------------

    async def cancel_order(self, order_ref: str, reason: str = "buyer_cancelled") -> OrderView:
        """取消等待支付的订单；重复取消为空操作"""
        async with self._locks.hold(order_ref):
            async with self._uow_factory() as uow:
                domain_service = OrderDomainService(uow.order_repository, uow.attempt_repository)
                order = await uow.order_repository.get_by_ref(order_ref)
                if order is None:
                    raise UnknownOrderException(order_ref)
                if order.status == OrderStatus.CANCELLED:
                    return await self._to_view(uow, order)
                if order.is_final_status():
                    raise OrderNotPayableException(order_ref, order.status.value)
                if not await domain_service.cancel_order(order, reason):
                    current = await uow.order_repository.get_by_ref(order_ref)
                    raise OrderNotPayableException(order_ref, current.status.value if current else "unknown")
                self._publish(domain_service)
                logger.info("order_cancelled", order_ref=order_ref, reason=reason)
                return await self._to_view(uow, order)

    async def get_order(self, order_ref: str) -> OrderView:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
            if order is None:
                raise UnknownOrderException(order_ref)
            return await self._to_view(uow, order)

    async def _to_view(self, uow: AbstractUnitOfWork, order: Order) -> OrderView:
        attempts = await uow.attempt_repository.list_by_order(order.order_ref)
        return OrderView(
            id=order.order_ref,
            status=order.status.value,
            amount=order.amount,
            currency=order.currency,
            items=[
                OrderItemView(
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                )
                for item in order.line_items
            ],
            attempts=[
                PaymentAttemptView(
                    payment_id=a.processor_payment_ref,
                    outcome=a.outcome.value,
                    amount=a.amount,
                    currency=a.currency,
                    created_at=a.created_at,
                )
                for a in attempts
            ],
            failure_reason=order.failure_reason,
            created_at=order.created_at,
            verified_at=order.verified_at,
        )

    # ------------------------------------------------------------------
    # expiry sweep
    # ------------------------------------------------------------------

    async def expire_stale_orders(self, now: Optional[datetime] = None) -> int:
        """把超过支付窗口的 awaiting_payment 订单置为失败，返回处理数量

        按 (created_at, order_ref) 游标逐页扫描，被跳过的订单（处理方已收款、处理方不可达）
        不会挡住后面的订单。
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=self._store.payment_window_minutes)
        batch_size = self._store.expiry_sweep_batch_size

        expired = scanned = 0
        cursor = None
        while True:
            async with self._uow_factory(readonly=True) as uow:
                page = await uow.order_repository.list_stale(
                    OrderStatus.AWAITING_PAYMENT, cutoff, limit=batch_size, after=cursor
                )
            for candidate in page:
                if await self._expire_one(candidate):
                    expired += 1
            scanned += len(page)
            if len(page) < batch_size:
                break
            cursor = (page[-1].created_at, page[-1].order_ref)

        logger.info("stale_orders_expired", expired=expired, scanned=scanned, cutoff=cutoff.isoformat())
        return expired

    async def _expire_one(self, candidate: Order) -> bool:
        order_ref = candidate.order_ref
        try:
            processor_order = await self._gateway.fetch_order(order_ref)
        except PaymentRecoverableError as e:
            # 无法确认处理方状态时不做处理，下一轮再试
            logger.warning("order_expiry_deferred", order_ref=order_ref, error=e.message)
            return False
        except PaymentProviderError as e:
            logger.info("order_expiry_processor_unknown", order_ref=order_ref, error=e.message)
            processor_order = None

        if processor_order is not None and processor_order.status == "paid":
            logger.warning(
                "order_paid_but_unverified",
                order_ref=order_ref,
                amount=candidate.amount,
                security_sensitive=True,
            )
            return False

        try:
            async with self._locks.hold(order_ref):
                async with self._uow_factory() as uow:
                    domain_service = OrderDomainService(uow.order_repository, uow.attempt_repository)
                    order = await uow.order_repository.get_by_ref(order_ref)
                    if order is None or order.status != OrderStatus.AWAITING_PAYMENT:
                        return False
                    failed = await domain_service.fail_order(order, "payment_window_expired")
                    self._publish(domain_service)
                    return failed
        except ServiceBusyException:
            # 正在被校验，留给下一轮
            logger.info("order_expiry_busy", order_ref=order_ref)
            return False

    def _publish(self, domain_service: OrderDomainService) -> None:
        for event in domain_service.get_domain_events():
            # 可以将事件发布到消息队列、指标系统等
            logger.debug("order_domain_event", event_type=type(event).__name__, order_ref=event.order_ref)
        domain_service.clear_events()
