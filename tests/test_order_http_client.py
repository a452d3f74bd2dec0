from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_order_service
from application.checkout.orchestrator import CheckoutOrchestrator
from application.checkout.state import BuyerDetails, CartItem, CheckoutState, ErrorKind
from application.checkout.widget import FakeCheckoutWidget, WidgetLoader
from application.dtos.orders import VerifyPaymentRequest
from application.ports.order_service import OrderServiceError, OrderServicePort, OrderServiceUnavailable
from infrastructure.external.api_clients import HttpOrderServiceClient
from main import app

BUYER = BuyerDetails(name="Asha Rao", email="asha@example.com", phone="9876543210")
SERUM = CartItem(product_id="1", name="Rose Glow Serum", price=Decimal("1299.00"))


@pytest_asyncio.fixture
async def http_client(order_service):
    app.dependency_overrides[get_order_service] = lambda: order_service
    client = HttpOrderServiceClient(
        "http://testserver", transport=httpx.ASGITransport(app=app), max_retries=0, retry_delay=0
    )
    yield client
    await client.close()
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_http_client_implements_the_port(http_client):
    assert isinstance(http_client, OrderServicePort)


@pytest.mark.asyncio
async def test_create_and_verify_over_http(http_client, gateway, order_request):
    created = await http_client.create_order(order_request(), idempotency_key="attempt-1")
    assert created.success is True
    assert created.order.amount == 189800
    assert created.key == "rzp_test_key"

    replay = await http_client.create_order(order_request(), idempotency_key="attempt-1")
    assert replay.order_id == created.order_id

    payment_id, signature = gateway.complete_checkout(created.order_id)
    verified = await http_client.verify_payment(
        VerifyPaymentRequest(
            razorpay_order_id=created.order_id,
            razorpay_payment_id=payment_id,
            razorpay_signature=signature,
        )
    )
    assert verified.success is True
    assert verified.payment_id == payment_id


@pytest.mark.asyncio
async def test_error_body_becomes_order_service_error(http_client, order_request):
    with pytest.raises(OrderServiceError) as exc_info:
        await http_client.create_order(order_request(amount="1.00"))

    assert exc_info.value.code == "CatalogError"
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_field_errors_keep_the_field(http_client, order_request):
    req = order_request(customer={"name": "Asha", "email": "asha@example.com", "phone": ""})
    with pytest.raises(OrderServiceError) as exc_info:
        await http_client.create_order(req)

    assert exc_info.value.code == "ValidationError"
    assert exc_info.value.field == "customer.phone"


@pytest.mark.asyncio
async def test_gateway_errors_without_body_are_unavailable(order_request):
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))
    client = HttpOrderServiceClient("http://store.test", transport=transport, max_retries=1, retry_delay=0)

    with pytest.raises(OrderServiceUnavailable):
        await client.create_order(order_request())
    await client.close()


@pytest.mark.asyncio
async def test_network_errors_are_unavailable(order_request):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = HttpOrderServiceClient(
        "http://store.test", transport=httpx.MockTransport(handler), max_retries=2, retry_delay=0
    )

    with pytest.raises(OrderServiceUnavailable):
        await client.create_order(order_request(), idempotency_key="attempt-9")
    assert len(calls) == 3
    assert all(r.headers["Idempotency-Key"] == "attempt-9" for r in calls)
    await client.close()


@pytest.mark.asyncio
async def test_orchestrator_over_http(http_client, gateway):
    loader = WidgetLoader(
        "https://checkout.test/v1/checkout.js",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="/* checkout */")),
    )
    widget = FakeCheckoutWidget(complete=lambda cfg: gateway.complete_checkout(cfg.order_id))
    orchestrator = CheckoutOrchestrator("cart-http", http_client, widget, loader=loader)

    ctx = await orchestrator.pay([SERUM], BUYER, Decimal("1299.00"))

    assert ctx.state == CheckoutState.SUCCEEDED
    assert ctx.amount == 129900


@pytest.mark.asyncio
async def test_orchestrator_reports_unreachable_store(gateway):
    client = HttpOrderServiceClient(
        "http://store.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down")),
        max_retries=0,
        retry_delay=0,
    )
    loader = WidgetLoader(
        "https://checkout.test/v1/checkout.js",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="/* checkout */")),
    )
    orchestrator = CheckoutOrchestrator("cart-down", client, FakeCheckoutWidget(), loader=loader)

    ctx = await orchestrator.pay([SERUM], BUYER)

    assert ctx.state == CheckoutState.FAILED
    assert ctx.error.kind == ErrorKind.NETWORK
    assert ctx.error.retryable is True
    await client.close()


def _loader():
    return WidgetLoader(
        "https://checkout.test/v1/checkout.js",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="/* checkout */")),
    )


@pytest.mark.asyncio
async def test_protocol_errors_are_unavailable(order_request):
    def handler(request):
        raise httpx.RemoteProtocolError("peer closed connection without response", request=request)

    client = HttpOrderServiceClient("http://store.test", transport=httpx.MockTransport(handler), max_retries=0)

    with pytest.raises(OrderServiceUnavailable):
        await client.create_order(order_request())
    await client.close()


@pytest.mark.asyncio
async def test_protocol_error_does_not_jam_the_cart(gateway):
    def handler(request):
        raise httpx.RemoteProtocolError("peer closed connection without response", request=request)

    broken = HttpOrderServiceClient("http://store.test", transport=httpx.MockTransport(handler), max_retries=0)
    widget = FakeCheckoutWidget(complete=lambda cfg: gateway.complete_checkout(cfg.order_id))
    orchestrator = CheckoutOrchestrator("cart-flaky", broken, widget, loader=_loader())

    ctx = await orchestrator.pay([SERUM], BUYER)
    assert ctx.state == CheckoutState.FAILED
    assert ctx.error.kind == ErrorKind.NETWORK
    first_attempt = ctx.attempt_id

    ctx = await orchestrator.pay([SERUM], BUYER)
    assert ctx.state == CheckoutState.FAILED
    assert ctx.attempt_id != first_attempt
    await broken.close()


@pytest.mark.asyncio
async def test_unexpected_success_body_is_unavailable(order_request):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": True}))
    client = HttpOrderServiceClient("http://store.test", transport=transport, max_retries=0)

    with pytest.raises(OrderServiceUnavailable):
        await client.create_order(order_request())
    await client.close()


@pytest.mark.asyncio
async def test_server_side_error_codes_are_unavailable(order_request):
    body = {"success": False, "error": "Order is being processed", "code": "ServiceBusy", "details": None}
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json=body))
    client = HttpOrderServiceClient("http://store.test", transport=transport, max_retries=0)

    with pytest.raises(OrderServiceUnavailable):
        await client.create_order(order_request())
    await client.close()
