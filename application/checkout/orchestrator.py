"""
Checkout orchestrator runtime and per-cart registry.

The runtime owns one CheckoutContext, feeds events through `transition`,
executes the returned effects and queues their result events. It suspends
only while creating the order, inside the widget and while verifying.
"""
from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from application.checkout.state import (
    RESTARTABLE_STATES,
    TERMINAL_STATES,
    Abandon,
    BuyerDetails,
    CartItem,
    CheckoutContext,
    CheckoutState,
    CreateOrder,
    DiscardEvent,
    ErrorKind,
    InputAccepted,
    InputRejected,
    OpenWidget,
    OrderCreateFailed,
    OrderCreated,
    PaymentRejected,
    PaymentVerified,
    PaySubmitted,
    ReleaseCart,
    Reset,
    ValidateInput,
    VerifyPayment,
    WidgetClosed,
    WidgetFailed,
    WidgetLoadFailed,
    WidgetSucceeded,
    transition,
    validate_checkout_input,
)
from application.checkout.widget import (
    CheckoutWidget,
    WidgetConfig,
    WidgetDismissed,
    WidgetFailure,
    WidgetLoader,
    WidgetLoadError,
    WidgetSuccess,
)
from application.dtos.orders import (
    AddressIn,
    CreateOrderRequest,
    CustomerIn,
    OrderItemIn,
    VerifyPaymentRequest,
)
from application.ports.order_service import OrderServiceError, OrderServicePort, OrderServiceUnavailable
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings

logger = get_logger(__name__)

CartReleaser = Callable[[str, str], Awaitable[None]]


class CheckoutInProgress(Exception):
    """A purchase attempt for this cart is already running."""

    def __init__(self, cart_id: str, state: CheckoutState):
        self.cart_id = cart_id
        self.state = state
        super().__init__(f"Checkout for cart {cart_id} is already {state.value}")


_CREATE_ERROR_KINDS = {
    "ValidationError": ErrorKind.VALIDATION,
    "CatalogError": ErrorKind.CATALOG,
}


class CheckoutOrchestrator:
    def __init__(
        self,
        cart_id: str,
        order_service: OrderServicePort,
        widget: CheckoutWidget,
        *,
        loader: Optional[WidgetLoader] = None,
        release_cart: Optional[CartReleaser] = None,
        merchant_name: Optional[str] = None,
        description: Optional[str] = None,
        theme_color: Optional[str] = None,
    ):
        self._ctx = CheckoutContext(cart_id=cart_id)
        self._order_service = order_service
        self._widget = widget
        self._loader = loader or WidgetLoader.instance()
        self._release_cart = release_cart
        self._merchant_name = merchant_name or settings.store.merchant_name
        self._description = description or payment_settings.checkout.description
        self._theme_color = theme_color or payment_settings.checkout.theme_color
        self._queue: asyncio.Queue = asyncio.Queue()
        self._draining = False
        self._widget_task: Optional[asyncio.Future] = None
        self._abandoned = False
        self.history: List[CheckoutState] = [CheckoutState.IDLE]
        self.discarded: List[object] = []

    @property
    def context(self) -> CheckoutContext:
        return self._ctx

    @property
    def state(self) -> CheckoutState:
        return self._ctx.state

    @property
    def busy(self) -> bool:
        return self._ctx.state not in RESTARTABLE_STATES and self._ctx.state not in TERMINAL_STATES

    async def pay(
        self,
        items: Iterable[CartItem],
        buyer: BuyerDetails,
        cart_total: Optional[Decimal] = None,
    ) -> CheckoutContext:
        """Run one purchase attempt to its end state and return the final context."""
        if self.state not in RESTARTABLE_STATES:
            raise CheckoutInProgress(self._ctx.cart_id, self.state)
        await self.dispatch(
            PaySubmitted(
                attempt_id=uuid.uuid4().hex,
                items=tuple(items),
                buyer=buyer,
                cart_total=cart_total,
            )
        )
        return self._ctx

    async def reset(self) -> CheckoutContext:
        await self.dispatch(Reset())
        return self._ctx

    async def abandon(self) -> CheckoutContext:
        """Close an open widget and cancel the attempt; the order is left for the expiry sweep."""
        task = self._widget_task
        self._abandoned = True
        await self.dispatch(Abandon())
        if task is not None and not task.done():
            task.cancel()
        return self._ctx

    async def dispatch(self, event: object) -> None:
        """Queue an event; drains the queue unless a drain is already running."""
        self._queue.put_nowait(event)
        if self._draining:
            return
        self._draining = True
        try:
            while not self._queue.empty():
                current = self._queue.get_nowait()
                before = self._ctx.state
                self._ctx, effects = transition(self._ctx, current)
                if self._ctx.state != before:
                    self.history.append(self._ctx.state)
                    logger.info(
                        "checkout_state_changed",
                        cart_id=self._ctx.cart_id,
                        from_state=before.value,
                        to_state=self._ctx.state.value,
                        order_ref=self._ctx.order_ref,
                    )
                for effect in effects:
                    try:
                        result = await self._run(effect)
                    except Exception as exc:
                        result = self._effect_failed(effect, exc)
                    if result is not None:
                        self._queue.put_nowait(result)
        finally:
            self._draining = False

    async def _run(self, effect: object) -> Optional[object]:
        if isinstance(effect, ValidateInput):
            return validate_checkout_input(effect.items, effect.buyer) or InputAccepted()
        if isinstance(effect, CreateOrder):
            return await self._create_order(effect)
        if isinstance(effect, OpenWidget):
            return await self._open_widget(effect)
        if isinstance(effect, VerifyPayment):
            return await self._verify(effect)
        if isinstance(effect, ReleaseCart):
            if self._release_cart is not None:
                await self._release_cart(effect.cart_id, effect.order_ref)
            logger.info("checkout_cart_released", cart_id=effect.cart_id, order_ref=effect.order_ref)
            return None
        if isinstance(effect, DiscardEvent):
            self.discarded.append(effect.event)
            logger.warning(
                "checkout_event_discarded",
                cart_id=self._ctx.cart_id,
                state=self._ctx.state.value,
                active_order_ref=self._ctx.order_ref,
                event_type=type(effect.event).__name__,
                event_order_ref=getattr(effect.event, "order_ref", None),
                reason=effect.reason,
            )
            return None
        raise TypeError(f"unknown checkout effect: {effect!r}")

    def _effect_failed(self, effect: object, exc: Exception) -> Optional[object]:
        """Turn an unexpected effect error into the failure event of the active attempt."""
        logger.error(
            "checkout_effect_failed",
            cart_id=self._ctx.cart_id,
            effect=type(effect).__name__,
            order_ref=self._ctx.order_ref,
            error_type=type(exc).__name__,
            exc_info=True,
        )
        if isinstance(effect, ValidateInput):
            return InputRejected("customer", "Please check your details and try again")
        if isinstance(effect, CreateOrder):
            return OrderCreateFailed(ErrorKind.NETWORK, "Could not reach the store, please try again")
        if isinstance(effect, OpenWidget):
            return WidgetFailed(effect.order_ref, "The payment window stopped unexpectedly, please try again")
        if isinstance(effect, VerifyPayment):
            # the payment may have gone through: never retried automatically
            return PaymentRejected(effect.order_ref, type(exc).__name__, str(exc))
        if isinstance(effect, ReleaseCart):
            return None
        raise exc

    async def _create_order(self, effect: CreateOrder) -> object:
        buyer = effect.buyer
        request = CreateOrderRequest(
            amount=effect.cart_total,
            currency=settings.store.currency,
            items=[
                OrderItemIn(product_id=i.product_id, name=i.name, price=i.price, quantity=i.quantity)
                for i in effect.items
            ],
            customer=CustomerIn(
                name=buyer.name,
                email=buyer.email,
                phone=buyer.phone,
                address=AddressIn(address=buyer.address) if buyer.address else None,
            ),
        )
        try:
            response = await self._order_service.create_order(request, idempotency_key=effect.idempotency_key)
        except OrderServiceError as exc:
            kind = _CREATE_ERROR_KINDS.get(exc.code, ErrorKind.NETWORK)
            return OrderCreateFailed(kind, exc.message, field=exc.field)
        except OrderServiceUnavailable as exc:
            return OrderCreateFailed(ErrorKind.NETWORK, f"Could not reach the store, please try again ({exc})")
        return OrderCreated(
            order_ref=response.order_id,
            amount=response.order.amount,
            currency=response.order.currency,
            key=response.key,
        )

    async def _open_widget(self, effect: OpenWidget) -> object:
        try:
            await self._loader.load()
        except WidgetLoadError as exc:
            return WidgetLoadFailed(str(exc))
        config = WidgetConfig(
            key=effect.key,
            amount=effect.amount,
            currency=effect.currency,
            order_id=effect.order_ref,
            name=self._merchant_name,
            description=self._description,
            prefill={"name": effect.buyer.name, "email": effect.buyer.email, "contact": effect.buyer.phone},
            theme_color=self._theme_color,
        )
        self._abandoned = False
        self._widget_task = asyncio.ensure_future(self._widget.open(config))
        try:
            outcome = await self._widget_task
        except asyncio.CancelledError:
            if not self._abandoned:
                raise
            # abandon() already queued the Abandon event
            return None
        finally:
            self._widget_task = None

        event = self._outcome_event(outcome)
        if event.order_ref != effect.order_ref:
            # the widget answered for another order: record it, then fail this attempt
            logger.warning(
                "checkout_widget_order_mismatch",
                cart_id=self._ctx.cart_id,
                order_ref=effect.order_ref,
                outcome_order_ref=event.order_ref,
                security_sensitive=True,
            )
            self._queue.put_nowait(event)
            return WidgetFailed(effect.order_ref, "The payment window returned a response for another order")
        return event

    @staticmethod
    def _outcome_event(outcome: object) -> object:
        if isinstance(outcome, WidgetSuccess):
            return WidgetSucceeded(outcome.order_id, outcome.payment_id, outcome.signature)
        if isinstance(outcome, WidgetFailure):
            return WidgetFailed(outcome.order_id, outcome.description)
        if isinstance(outcome, WidgetDismissed):
            return WidgetClosed(outcome.order_id)
        raise TypeError(f"unknown widget outcome: {outcome!r}")

    async def _verify(self, effect: VerifyPayment) -> object:
        request = VerifyPaymentRequest(
            razorpay_order_id=effect.order_ref,
            razorpay_payment_id=effect.payment_ref,
            razorpay_signature=effect.signature,
        )
        try:
            response = await self._order_service.verify_payment(request)
        except OrderServiceError as exc:
            logger.warning(
                "checkout_verification_failed",
                cart_id=self._ctx.cart_id,
                order_ref=effect.order_ref,
                code=exc.code,
                security_sensitive=True,
            )
            return PaymentRejected(effect.order_ref, exc.code, exc.message)
        except OrderServiceUnavailable as exc:
            logger.warning(
                "checkout_verification_unreachable",
                cart_id=self._ctx.cart_id,
                order_ref=effect.order_ref,
                error=str(exc),
                security_sensitive=True,
            )
            return PaymentRejected(effect.order_ref, "Unavailable", str(exc))
        if not response.success:
            return PaymentRejected(effect.order_ref, "VerificationFailed", response.error or "")
        return PaymentVerified(
            order_ref=effect.order_ref,
            amount=response.amount if response.amount is not None else self._ctx.amount,
            currency=response.currency or self._ctx.currency,
        )


class CheckoutRegistry:
    """One orchestrator per cart; a second concurrent attempt is rejected."""

    def __init__(self, factory: Callable[[str], CheckoutOrchestrator]):
        self._factory = factory
        self._orchestrators: Dict[str, CheckoutOrchestrator] = {}

    def get(self, cart_id: str) -> CheckoutOrchestrator:
        orchestrator = self._orchestrators.get(cart_id)
        if orchestrator is None:
            orchestrator = self._orchestrators[cart_id] = self._factory(cart_id)
        return orchestrator

    async def checkout(
        self,
        cart_id: str,
        items: Iterable[CartItem],
        buyer: BuyerDetails,
        cart_total: Optional[Decimal] = None,
    ) -> CheckoutContext:
        orchestrator = self.get(cart_id)
        if orchestrator.state == CheckoutState.SUCCEEDED:
            # succeeded before: start a fresh orchestrator for the next purchase
            orchestrator = self._orchestrators[cart_id] = self._factory(cart_id)
        if orchestrator.busy:
            logger.warning("checkout_in_progress", cart_id=cart_id, state=orchestrator.state.value)
            raise CheckoutInProgress(cart_id, orchestrator.state)
        return await orchestrator.pay(items, buyer, cart_total)

    def forget(self, cart_id: str) -> None:
        self._orchestrators.pop(cart_id, None)
