"""
Checkout state machine: states, events, effects and the pure transition.

`transition(context, event)` never performs I/O. It returns the next
context plus the effects the runtime must execute; effect results come back
as new events.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union


class CheckoutState(str, Enum):
    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    CREATING_ORDER = "creating_order"
    AWAITING_WIDGET = "awaiting_widget"
    VERIFYING_PAYMENT = "verifying_payment"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({CheckoutState.SUCCEEDED, CheckoutState.FAILED, CheckoutState.CANCELLED})
# states from which a new attempt may start
RESTARTABLE_STATES = frozenset({CheckoutState.IDLE, CheckoutState.FAILED, CheckoutState.CANCELLED})


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CATALOG = "catalog"
    NETWORK = "network"
    WIDGET_LOAD = "widget_load"
    PROCESSOR_FAILURE = "processor_failure"
    BUYER_CANCELLED = "buyer_cancelled"
    VERIFICATION = "verification"


@dataclass(frozen=True)
class CheckoutError:
    kind: ErrorKind
    message: str
    retryable: bool
    contact_support: bool = False
    field: Optional[str] = None

    @property
    def security_sensitive(self) -> bool:
        return self.contact_support


@dataclass(frozen=True)
class CartItem:
    product_id: str
    name: str
    price: Decimal
    quantity: int = 1


@dataclass(frozen=True)
class BuyerDetails:
    name: str = ""
    email: str = ""
    phone: str = ""
    address: Optional[str] = None


@dataclass(frozen=True)
class CheckoutContext:
    cart_id: str
    state: CheckoutState = CheckoutState.IDLE
    attempt_id: Optional[str] = None
    items: Tuple[CartItem, ...] = ()
    buyer: BuyerDetails = field(default_factory=BuyerDetails)
    cart_total: Optional[Decimal] = None
    # everything below comes from the Order Service, never from the cart
    order_ref: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    key: Optional[str] = None
    payment_ref: Optional[str] = None
    error: Optional[CheckoutError] = None


# ----- events -----

@dataclass(frozen=True)
class PaySubmitted:
    attempt_id: str
    items: Tuple[CartItem, ...]
    buyer: BuyerDetails
    cart_total: Optional[Decimal] = None


@dataclass(frozen=True)
class InputAccepted:
    pass


@dataclass(frozen=True)
class InputRejected:
    field: str
    message: str


@dataclass(frozen=True)
class OrderCreated:
    order_ref: str
    amount: int
    currency: str
    key: str


@dataclass(frozen=True)
class OrderCreateFailed:
    kind: ErrorKind
    message: str
    field: Optional[str] = None


@dataclass(frozen=True)
class WidgetLoadFailed:
    message: str


@dataclass(frozen=True)
class WidgetSucceeded:
    order_ref: str
    payment_ref: str
    signature: str


@dataclass(frozen=True)
class WidgetFailed:
    order_ref: str
    description: str


@dataclass(frozen=True)
class WidgetClosed:
    order_ref: str


@dataclass(frozen=True)
class PaymentVerified:
    order_ref: str
    amount: int
    currency: str


@dataclass(frozen=True)
class PaymentRejected:
    order_ref: str
    code: str
    message: str


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Abandon:
    """Buyer walks away from an open widget; the order is left to expire."""


CheckoutEvent = Union[
    PaySubmitted, InputAccepted, InputRejected, OrderCreated, OrderCreateFailed,
    WidgetLoadFailed, WidgetSucceeded, WidgetFailed, WidgetClosed,
    PaymentVerified, PaymentRejected, Reset, Abandon,
]


# ----- effects -----

@dataclass(frozen=True)
class ValidateInput:
    items: Tuple[CartItem, ...]
    buyer: BuyerDetails


@dataclass(frozen=True)
class CreateOrder:
    idempotency_key: str
    items: Tuple[CartItem, ...]
    buyer: BuyerDetails
    cart_total: Optional[Decimal]


@dataclass(frozen=True)
class OpenWidget:
    order_ref: str
    amount: int
    currency: str
    key: str
    buyer: BuyerDetails


@dataclass(frozen=True)
class VerifyPayment:
    order_ref: str
    payment_ref: str
    signature: str


@dataclass(frozen=True)
class ReleaseCart:
    cart_id: str
    order_ref: str


@dataclass(frozen=True)
class DiscardEvent:
    event: object
    reason: str


CheckoutEffect = Union[ValidateInput, CreateOrder, OpenWidget, VerifyPayment, ReleaseCart, DiscardEvent]


SUPPORT_MESSAGE = (
    "We could not confirm your payment. If money was deducted, "
    "please contact support with order reference {order_ref}."
)


def validate_checkout_input(items: Tuple[CartItem, ...], buyer: BuyerDetails) -> Optional[InputRejected]:
    """Local presence checks; the Order Service repeats full validation."""
    if not buyer.name.strip():
        return InputRejected("customer.name", "Please enter your name")
    if not buyer.email.strip():
        return InputRejected("customer.email", "Please enter your email")
    if not buyer.phone.strip():
        return InputRejected("customer.phone", "Please enter your phone number")
    if not items:
        return InputRejected("items", "Your cart is empty")
    return None


def _ignore(ctx: CheckoutContext, event: object, reason: str):
    return ctx, [DiscardEvent(event, reason)]


def transition(ctx: CheckoutContext, event: CheckoutEvent) -> Tuple[CheckoutContext, list]:
    state = ctx.state

    if isinstance(event, PaySubmitted):
        if state not in RESTARTABLE_STATES:
            return _ignore(ctx, event, f"attempt already {state.value}")
        if ctx.error is not None and ctx.error.contact_support:
            # needs an explicit Reset after the buyer has seen the support message
            return _ignore(ctx, event, "previous attempt needs support")
        nxt = CheckoutContext(
            cart_id=ctx.cart_id,
            state=CheckoutState.VALIDATING_INPUT,
            attempt_id=event.attempt_id,
            items=event.items,
            buyer=event.buyer,
            cart_total=event.cart_total,
        )
        return nxt, [ValidateInput(event.items, event.buyer)]

    if isinstance(event, Reset):
        if state in TERMINAL_STATES:
            return CheckoutContext(cart_id=ctx.cart_id), []
        return _ignore(ctx, event, f"cannot reset while {state.value}")

    if isinstance(event, Abandon):
        if state != CheckoutState.AWAITING_WIDGET:
            return _ignore(ctx, event, f"nothing to abandon ({state.value})")
        err = CheckoutError(ErrorKind.BUYER_CANCELLED, "Payment was cancelled", retryable=True)
        return replace(ctx, state=CheckoutState.CANCELLED, error=err), []

    if isinstance(event, (InputAccepted, InputRejected)):
        if state != CheckoutState.VALIDATING_INPUT:
            return _ignore(ctx, event, f"not validating ({state.value})")
        if isinstance(event, InputRejected):
            err = CheckoutError(ErrorKind.VALIDATION, event.message, retryable=True, field=event.field)
            return replace(ctx, state=CheckoutState.IDLE, error=err), []
        return (
            replace(ctx, state=CheckoutState.CREATING_ORDER),
            [CreateOrder(ctx.attempt_id, ctx.items, ctx.buyer, ctx.cart_total)],
        )

    if isinstance(event, (OrderCreated, OrderCreateFailed)):
        if state != CheckoutState.CREATING_ORDER:
            return _ignore(ctx, event, f"not creating an order ({state.value})")
        if isinstance(event, OrderCreateFailed):
            err = CheckoutError(event.kind, event.message, retryable=True, field=event.field)
            return replace(ctx, state=CheckoutState.FAILED, error=err), []
        nxt = replace(
            ctx,
            state=CheckoutState.AWAITING_WIDGET,
            order_ref=event.order_ref,
            amount=event.amount,
            currency=event.currency,
            key=event.key,
        )
        return nxt, [OpenWidget(event.order_ref, event.amount, event.currency, event.key, ctx.buyer)]

    if isinstance(event, WidgetLoadFailed):
        if state != CheckoutState.AWAITING_WIDGET:
            return _ignore(ctx, event, f"widget not expected ({state.value})")
        err = CheckoutError(ErrorKind.WIDGET_LOAD, event.message, retryable=True)
        return replace(ctx, state=CheckoutState.FAILED, error=err), []

    if isinstance(event, (WidgetSucceeded, WidgetFailed, WidgetClosed)):
        if state != CheckoutState.AWAITING_WIDGET:
            return _ignore(ctx, event, f"widget callback while {state.value}")
        if event.order_ref != ctx.order_ref:
            return _ignore(ctx, event, "callback for another order")
        if isinstance(event, WidgetSucceeded):
            nxt = replace(ctx, state=CheckoutState.VERIFYING_PAYMENT, payment_ref=event.payment_ref)
            return nxt, [VerifyPayment(event.order_ref, event.payment_ref, event.signature)]
        if isinstance(event, WidgetFailed):
            err = CheckoutError(ErrorKind.PROCESSOR_FAILURE, event.description, retryable=True)
            return replace(ctx, state=CheckoutState.FAILED, error=err), []
        err = CheckoutError(ErrorKind.BUYER_CANCELLED, "Payment was cancelled", retryable=True)
        return replace(ctx, state=CheckoutState.CANCELLED, error=err), []

    if isinstance(event, (PaymentVerified, PaymentRejected)):
        if state != CheckoutState.VERIFYING_PAYMENT:
            return _ignore(ctx, event, f"verification result while {state.value}")
        if event.order_ref != ctx.order_ref:
            return _ignore(ctx, event, "verification result for another order")
        if isinstance(event, PaymentVerified):
            nxt = replace(ctx, state=CheckoutState.SUCCEEDED, amount=event.amount, currency=event.currency, error=None)
            return nxt, [ReleaseCart(ctx.cart_id, event.order_ref)]
        err = CheckoutError(
            ErrorKind.VERIFICATION,
            SUPPORT_MESSAGE.format(order_ref=ctx.order_ref),
            retryable=False,
            contact_support=True,
        )
        return replace(ctx, state=CheckoutState.FAILED, error=err), []

    return _ignore(ctx, event, "unknown event")
