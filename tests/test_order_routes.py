import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_order_service
from main import app

CREATE_BODY = {
    "amount": 1898,
    "currency": "INR",
    "items": [
        {"productId": 1, "name": "Rose Glow Serum", "price": 1299, "quantity": 1},
        {"productId": 2, "name": "Velvet Matte Lipstick", "price": 599, "quantity": 1},
    ],
    "customer": {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210", "address": "12 MG Road"},
}


@pytest_asyncio.fixture
async def api(order_service):
    app.dependency_overrides[get_order_service] = lambda: order_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


async def _create(api, **headers):
    response = await api.post("/api/orders/create", json=CREATE_BODY, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_order(api):
    body = await _create(api)

    assert body == {
        "success": True,
        "orderId": "order_fake_0001",
        "order": {"id": "order_fake_0001", "amount": 189800, "currency": "INR"},
        "key": "rzp_test_key",
    }


@pytest.mark.asyncio
async def test_create_order_replays_idempotency_key(api, gateway):
    first = await _create(api, **{"Idempotency-Key": "attempt-1"})
    second = await _create(api, **{"Idempotency-Key": "attempt-1"})

    assert first["orderId"] == second["orderId"]
    assert len(gateway.created_requests) == 1


@pytest.mark.asyncio
async def test_create_order_validation_error(api):
    body = {**CREATE_BODY, "customer": {"name": "Asha Rao", "email": "", "phone": "9876543210"}}
    response = await api.post("/api/orders/create", json=body)

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["code"] == "ValidationError"
    assert payload["details"]["field"] == "customer.email"


@pytest.mark.asyncio
async def test_create_order_catalog_error(api):
    body = {**CREATE_BODY, "amount": 1}
    response = await api.post("/api/orders/create", json=body)

    assert response.status_code == 409
    assert response.json()["code"] == "CatalogError"


@pytest.mark.asyncio
async def test_malformed_body_is_a_validation_error(api):
    response = await api.post("/api/orders/create", json={**CREATE_BODY, "items": "everything"})

    assert response.status_code == 422
    payload = response.json()
    assert payload["success"] is False
    assert payload["code"] == "ValidationError"


@pytest.mark.asyncio
async def test_verify_payment(api, gateway):
    order_id = (await _create(api))["orderId"]
    payment_id, signature = gateway.complete_checkout(order_id)

    response = await api.post(
        "/api/orders/verify",
        json={"razorpay_order_id": order_id, "razorpay_payment_id": payment_id, "razorpay_signature": signature},
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "orderId": order_id,
        "paymentId": payment_id,
        "amount": 189800,
        "currency": "INR",
    }


@pytest.mark.asyncio
async def test_verify_rejects_bad_signature(api, gateway):
    order_id = (await _create(api))["orderId"]
    payment_id, _ = gateway.complete_checkout(order_id)

    response = await api.post(
        "/api/orders/verify",
        json={"razorpay_order_id": order_id, "razorpay_payment_id": payment_id, "razorpay_signature": "0" * 64},
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["code"] == "VerificationFailed"
    assert payload["details"]["reason"] == "signature_invalid"


@pytest.mark.asyncio
async def test_verify_unknown_order(api):
    response = await api.post(
        "/api/orders/verify",
        json={"razorpay_order_id": "order_missing", "razorpay_payment_id": "pay_1", "razorpay_signature": "x"},
    )

    assert response.status_code == 404
    assert response.json()["code"] == "UnknownOrder"


@pytest.mark.asyncio
async def test_verify_requires_all_fields(api):
    response = await api.post("/api/orders/verify", json={"razorpay_order_id": "order_1"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cancel_and_read_order(api):
    order_id = (await _create(api))["orderId"]

    cancelled = await api.post("/api/orders/cancel", json={"orderId": order_id})
    assert cancelled.json() == {"success": True, "orderId": order_id, "status": "cancelled"}

    response = await api.get(f"/api/orders/{order_id}")
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["status"] == "cancelled"
    assert order["failureReason"] == "buyer_cancelled"
    assert [item["productId"] for item in order["items"]] == ["1", "2"]


@pytest.mark.asyncio
async def test_request_id_is_echoed(api):
    response = await api.get("/api/orders/order_missing", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 404
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["details"]["request_id"] == "req-123"


@pytest.mark.asyncio
async def test_health(api):
    response = await api.get("/health")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "healthy"


def test_request_log_redacts_payment_and_contact_fields():
    from api.middleware.logging import redact

    body = {
        "razorpay_order_id": "order_1",
        "razorpay_signature": "abc",
        "customer": {"name": "Asha Rao", "email": "asha@example.com", "phone": "+91 98765 43210"},
        "items": [{"productId": "1", "token": "t"}],
    }

    assert redact(body) == {
        "razorpay_order_id": "order_1",
        "razorpay_signature": "***",
        "customer": {"name": "Asha Rao", "email": "***", "phone": "***"},
        "items": [{"productId": "1", "token": "***"}],
    }


@pytest.mark.asyncio
async def test_verify_while_order_is_locked_elsewhere(uow_factory, gateway, catalog):
    from contextlib import asynccontextmanager

    from application.services.order_service import OrderApplicationService
    from domain.common.exceptions import ServiceBusyException

    class _BusyLock:
        def hold(self, key):
            @asynccontextmanager
            async def _busy():
                raise ServiceBusyException("Order is being processed, please retry shortly")
                yield

            return _busy()

    service = OrderApplicationService(uow_factory=uow_factory, gateway=gateway, locks=_BusyLock())
    app.dependency_overrides[get_order_service] = lambda: service
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
            response = await client.post(
                "/api/orders/verify",
                json={"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": "x"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["code"] == "ServiceBusy"
