import asyncio
from decimal import Decimal

import pytest

from application.dtos.orders import VerifyPaymentRequest
from domain.catalog.entity import Product
from domain.common.exceptions import (
    AmountMismatchException,
    CatalogException,
    OrderNotPayableException,
    OrderValidationException,
    UnknownOrderException,
    VerificationFailedException,
)
from domain.order.entity import AttemptOutcome, OrderStatus
from domain.payment.signature import compute_signature
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError


def _verify_request(order_ref, payment_id, signature):
    return VerifyPaymentRequest(
        razorpay_order_id=order_ref,
        razorpay_payment_id=payment_id,
        razorpay_signature=signature,
    )


# ----- createOrder -----

@pytest.mark.asyncio
async def test_create_order_prices_from_catalog(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())

    assert created.order_ref == "order_fake_0001"
    assert created.amount == 129900 + 59900
    assert created.currency == "INR"
    assert created.key == "rzp_test_key"
    assert created.status == "awaiting_payment"
    assert gateway.created_requests[0].amount == 189800

    view = await order_service.get_order(created.order_ref)
    assert view.status == "awaiting_payment"
    assert [(i.product_id, i.unit_price, i.quantity) for i in view.items] == [("1", 129900, 1), ("2", 59900, 1)]


@pytest.mark.asyncio
async def test_create_order_without_client_prices(order_service, order_request):
    req = order_request(
        amount=None,
        items=[{"productId": 2, "quantity": 3}],
    )
    created = await order_service.create_order(req)
    assert created.amount == 59900 * 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "customer, field",
    [
        ({"name": "", "email": "asha@example.com", "phone": "9876543210"}, "customer.name"),
        ({"name": "Asha", "email": "", "phone": "9876543210"}, "customer.email"),
        ({"name": "Asha", "email": "not-an-email", "phone": "9876543210"}, "customer.email"),
        ({"name": "Asha", "email": "asha@example.com", "phone": ""}, "customer.phone"),
    ],
)
async def test_create_order_rejects_incomplete_buyer(order_service, gateway, order_request, customer, field):
    with pytest.raises(OrderValidationException) as exc_info:
        await order_service.create_order(order_request(customer=customer))

    assert exc_info.value.field == field
    assert gateway.created_requests == []


@pytest.mark.asyncio
async def test_create_order_rejects_empty_cart(order_service, gateway, order_request):
    with pytest.raises(OrderValidationException) as exc_info:
        await order_service.create_order(order_request(items=[], amount=None))
    assert exc_info.value.field == "items"
    assert gateway.created_requests == []


@pytest.mark.asyncio
async def test_create_order_rejects_zero_quantity(order_service, order_request):
    req = order_request(amount=None, items=[{"productId": "1", "quantity": 0}])
    with pytest.raises(OrderValidationException) as exc_info:
        await order_service.create_order(req)
    assert exc_info.value.field == "items.0.quantity"


@pytest.mark.asyncio
async def test_create_order_rejects_other_currency(order_service, order_request):
    with pytest.raises(OrderValidationException) as exc_info:
        await order_service.create_order(order_request(currency="usd"))
    assert exc_info.value.field == "currency"


@pytest.mark.asyncio
async def test_create_order_rejects_sub_paisa_amounts(order_service, order_request):
    with pytest.raises(OrderValidationException) as exc_info:
        await order_service.create_order(order_request(amount="1898.005"))
    assert exc_info.value.field == "amount"


@pytest.mark.asyncio
async def test_tampered_item_price_is_a_catalog_error(order_service, gateway, order_request):
    req = order_request(
        amount="1.00",
        items=[{"productId": "1", "name": "Rose Glow Serum", "price": "1.00", "quantity": 1}],
    )
    with pytest.raises(CatalogException) as exc_info:
        await order_service.create_order(req)

    assert exc_info.value.details["current_price"] == 129900
    assert gateway.created_requests == []


@pytest.mark.asyncio
async def test_tampered_cart_total_is_a_catalog_error(order_service, gateway, order_request):
    with pytest.raises(CatalogException) as exc_info:
        await order_service.create_order(order_request(amount="10.00"))
    assert exc_info.value.details == {"submitted_amount": 1000, "current_amount": 189800}
    assert gateway.created_requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("product_id", ["404", "9"])
async def test_unknown_or_retired_product_is_a_catalog_error(order_service, order_request, product_id):
    req = order_request(amount=None, items=[{"productId": product_id, "quantity": 1}])
    with pytest.raises(CatalogException) as exc_info:
        await order_service.create_order(req)
    assert exc_info.value.details["product_id"] == product_id


@pytest.mark.asyncio
async def test_processor_failure_leaves_no_order(order_service, gateway, uow_factory, order_request):
    gateway.fail_next_create = PaymentRecoverableError("processor down", provider="fake")

    with pytest.raises(PaymentRecoverableError):
        await order_service.create_order(order_request(), idempotency_key="attempt-1")

    async with uow_factory(readonly=True) as uow:
        assert await uow.order_repository.get_by_idempotency_key("attempt-1") is None

    # the same attempt can be retried once the processor recovers
    created = await order_service.create_order(order_request(), idempotency_key="attempt-1")
    assert created.status == "awaiting_payment"


@pytest.mark.asyncio
async def test_idempotency_key_replays_the_same_order(order_service, gateway, order_request):
    first = await order_service.create_order(order_request(), idempotency_key="attempt-42")
    second = await order_service.create_order(order_request(), idempotency_key="attempt-42")

    assert second.order_ref == first.order_ref
    assert len(gateway.created_requests) == 1


@pytest.mark.asyncio
async def test_concurrent_creates_with_one_key_create_one_order(order_service, gateway, order_request):
    results = await asyncio.gather(
        *(order_service.create_order(order_request(), idempotency_key="attempt-7") for _ in range(4))
    )
    assert {r.order_ref for r in results} == {results[0].order_ref}
    assert len(gateway.created_requests) == 1


# ----- verifyPayment -----

@pytest.mark.asyncio
async def test_verify_happy_path(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(created.order_ref)

    result = await order_service.verify_payment(_verify_request(created.order_ref, payment_id, signature))

    assert result.order_ref == created.order_ref
    assert result.processor_payment_ref == payment_id
    assert result.amount == 189800
    assert result.already_verified is False

    view = await order_service.get_order(created.order_ref)
    assert view.status == "verified"
    assert view.verified_at is not None
    assert [a.outcome for a in view.attempts] == [AttemptOutcome.CONFIRMED.value]


@pytest.mark.asyncio
async def test_five_thousand_rupee_cart_end_to_end(order_service, gateway, uow_factory, order_request):
    async with uow_factory() as uow:
        await uow.product_repository.upsert(
            Product(product_id="5", name="Bridal Kit", unit_price=499900, currency="INR")
        )
    gateway.next_order_id = "order_abc"
    req = order_request(
        amount="4999.00",
        items=[{"productId": "5", "name": "Bridal Kit", "price": "4999.00", "quantity": 1}],
    )

    created = await order_service.create_order(req)
    assert (created.order_ref, created.amount, created.currency) == ("order_abc", 499900, "INR")

    gateway.register_payment("order_abc", payment_id="pay_123")
    signature = compute_signature("test_secret", "order_abc", "pay_123")
    result = await order_service.verify_payment(_verify_request("order_abc", "pay_123", signature))

    assert result.processor_payment_ref == "pay_123"
    assert result.amount == 499900
    assert (await order_service.get_order("order_abc")).status == "verified"


@pytest.mark.asyncio
async def test_verify_is_idempotent(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(created.order_ref)
    req = _verify_request(created.order_ref, payment_id, signature)

    first = await order_service.verify_payment(req)
    second = await order_service.verify_payment(req)

    assert first.already_verified is False
    assert second.already_verified is True
    assert second.processor_payment_ref == payment_id
    view = await order_service.get_order(created.order_ref)
    assert len(view.attempts) == 1


@pytest.mark.asyncio
async def test_concurrent_verifications_confirm_once(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(created.order_ref)
    req = _verify_request(created.order_ref, payment_id, signature)

    results = await asyncio.gather(*(order_service.verify_payment(req) for _ in range(5)))

    assert sum(1 for r in results if not r.already_verified) == 1
    assert all(r.order_ref == created.order_ref for r in results)
    view = await order_service.get_order(created.order_ref)
    confirmed = [a for a in view.attempts if a.outcome == AttemptOutcome.CONFIRMED.value]
    assert len(confirmed) == 1


@pytest.mark.asyncio
async def test_tampered_signature_is_recorded_and_order_stays_payable(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(created.order_ref)
    forged = ("0" if signature[0] != "0" else "1") + signature[1:]

    with pytest.raises(VerificationFailedException) as exc_info:
        await order_service.verify_payment(_verify_request(created.order_ref, payment_id, forged))
    assert exc_info.value.reason == "signature_invalid"
    assert exc_info.value.security_sensitive is True

    view = await order_service.get_order(created.order_ref)
    assert view.status == "awaiting_payment"
    assert [a.outcome for a in view.attempts] == [AttemptOutcome.SIGNATURE_INVALID.value]

    # the genuine callback still succeeds afterwards
    result = await order_service.verify_payment(_verify_request(created.order_ref, payment_id, signature))
    assert result.status == "verified"


@pytest.mark.asyncio
async def test_unknown_order_is_rejected(order_service, gateway):
    with pytest.raises(UnknownOrderException):
        await order_service.verify_payment(
            _verify_request("order_missing", "pay_1", gateway.sign("order_missing", "pay_1"))
        )


@pytest.mark.asyncio
async def test_payment_for_another_order_is_rejected(order_service, gateway, order_request):
    first = await order_service.create_order(order_request())
    second = await order_service.create_order(order_request())
    payment_id, _ = gateway.complete_checkout(first.order_ref)

    # correctly signed for the second order, but the payment belongs to the first
    with pytest.raises(VerificationFailedException) as exc_info:
        await order_service.verify_payment(
            _verify_request(second.order_ref, payment_id, gateway.sign(second.order_ref, payment_id))
        )
    assert exc_info.value.reason == "payment_order_mismatch"

    view = await order_service.get_order(second.order_ref)
    assert view.status == "awaiting_payment"
    assert view.attempts[0].outcome == AttemptOutcome.PROCESSOR_REPORTED_FAILURE.value


@pytest.mark.asyncio
async def test_failed_processor_payment_is_rejected(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(
        created.order_ref, status="failed", error_description="Card declined"
    )

    with pytest.raises(VerificationFailedException) as exc_info:
        await order_service.verify_payment(_verify_request(created.order_ref, payment_id, signature))
    assert exc_info.value.reason == "Card declined"
    assert (await order_service.get_order(created.order_ref)).status == "awaiting_payment"


@pytest.mark.asyncio
async def test_amount_mismatch_fails_the_order(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(created.order_ref, amount=100)

    with pytest.raises(AmountMismatchException) as exc_info:
        await order_service.verify_payment(_verify_request(created.order_ref, payment_id, signature))
    assert exc_info.value.details["expected_amount"] == 189800
    assert exc_info.value.details["actual_amount"] == 100

    view = await order_service.get_order(created.order_ref)
    assert view.status == "failed"
    assert view.failure_reason == "amount_mismatch"
    assert view.attempts[0].outcome == AttemptOutcome.AMOUNT_MISMATCH.value

    good_id, good_signature = gateway.complete_checkout(created.order_ref)
    with pytest.raises(VerificationFailedException) as closed:
        await order_service.verify_payment(_verify_request(created.order_ref, good_id, good_signature))
    assert closed.value.reason == "order_closed"


@pytest.mark.asyncio
async def test_unknown_payment_is_a_provider_error(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    signature = gateway.sign(created.order_ref, "pay_never_made")

    with pytest.raises(PaymentProviderError):
        await order_service.verify_payment(_verify_request(created.order_ref, "pay_never_made", signature))
    assert (await order_service.get_order(created.order_ref)).status == "awaiting_payment"


# ----- cancel -----

@pytest.mark.asyncio
async def test_cancel_is_repeatable_and_closes_the_order(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())

    view = await order_service.cancel_order(created.order_ref)
    assert view.status == "cancelled"
    again = await order_service.cancel_order(created.order_ref)
    assert again.status == "cancelled"

    payment_id, signature = gateway.complete_checkout(created.order_ref)
    with pytest.raises(VerificationFailedException) as exc_info:
        await order_service.verify_payment(_verify_request(created.order_ref, payment_id, signature))
    assert exc_info.value.reason == "order_closed"


@pytest.mark.asyncio
async def test_verified_order_cannot_be_cancelled(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    payment_id, signature = gateway.complete_checkout(created.order_ref)
    await order_service.verify_payment(_verify_request(created.order_ref, payment_id, signature))

    with pytest.raises(OrderNotPayableException):
        await order_service.cancel_order(created.order_ref)


@pytest.mark.asyncio
async def test_get_unknown_order(order_service):
    with pytest.raises(UnknownOrderException):
        await order_service.get_order("order_nope")


@pytest.mark.asyncio
async def test_amount_uses_decimal_major_units(order_service, order_request):
    created = await order_service.create_order(
        order_request(amount=Decimal("1299"), items=[{"productId": "1", "price": Decimal("1299.0")}])
    )
    assert created.amount == 129900
    assert OrderStatus(created.status) == OrderStatus.AWAITING_PAYMENT
