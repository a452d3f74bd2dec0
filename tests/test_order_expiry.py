from datetime import datetime, timedelta, timezone

import pytest

from core.config import settings
from infrastructure.external.payments.exceptions import PaymentRecoverableError


def _after_window(minutes: int = 31) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


@pytest.mark.asyncio
async def test_fresh_orders_are_left_alone(order_service, order_request):
    created = await order_service.create_order(order_request())

    assert await order_service.expire_stale_orders() == 0
    assert (await order_service.get_order(created.order_ref)).status == "awaiting_payment"


@pytest.mark.asyncio
async def test_unpaid_orders_expire_after_the_payment_window(order_service, order_request):
    created = await order_service.create_order(order_request())

    assert await order_service.expire_stale_orders(now=_after_window()) == 1

    view = await order_service.get_order(created.order_ref)
    assert view.status == "failed"
    assert view.failure_reason == "payment_window_expired"


@pytest.mark.asyncio
async def test_paid_but_unverified_orders_are_not_expired(order_service, gateway, order_request):
    created = await order_service.create_order(order_request())
    gateway.complete_checkout(created.order_ref)

    assert await order_service.expire_stale_orders(now=_after_window()) == 0
    assert (await order_service.get_order(created.order_ref)).status == "awaiting_payment"


@pytest.mark.asyncio
async def test_unreachable_processor_defers_expiry(order_service, gateway, order_request, monkeypatch):
    created = await order_service.create_order(order_request())

    async def _down(order_id):
        raise PaymentRecoverableError("processor down", provider="fake")

    monkeypatch.setattr(gateway, "fetch_order", _down)

    assert await order_service.expire_stale_orders(now=_after_window()) == 0
    assert (await order_service.get_order(created.order_ref)).status == "awaiting_payment"


@pytest.mark.asyncio
async def test_terminal_orders_are_not_touched(order_service, order_request):
    created = await order_service.create_order(order_request())
    await order_service.cancel_order(created.order_ref)

    assert await order_service.expire_stale_orders(now=_after_window()) == 0
    view = await order_service.get_order(created.order_ref)
    assert view.status == "cancelled"
    assert view.failure_reason == "buyer_cancelled"


@pytest.mark.asyncio
async def test_expiry_task_runs_on_its_own_engine(order_service, order_request, database_url, monkeypatch):
    from infrastructure.tasks.tasks.orders import expire_stale_orders

    created = await order_service.create_order(order_request())
    monkeypatch.setattr(settings.database, "url", database_url)
    monkeypatch.setattr(settings.redis, "url", None)

    # the task's processor client has never seen the order and reports it unknown
    assert await expire_stale_orders(now=_after_window()) == 1
    assert (await order_service.get_order(created.order_ref)).status == "failed"


def test_expiry_task_is_registered_with_beat():
    from infrastructure.tasks import celery_app
    import infrastructure.tasks.tasks  # noqa: F401

    entry = celery_app.conf.beat_schedule["orders-expire-stale"]
    assert entry["task"] == "orders.expire_stale"
    assert entry["schedule"] == float(settings.store.expiry_sweep_interval_seconds)
    assert "orders.expire_stale" in celery_app.tasks


@pytest.mark.asyncio
async def test_skipped_orders_do_not_block_later_ones(uow_factory, gateway, locks, catalog, order_request):
    from application.services.order_service import OrderApplicationService
    from core.config import StoreSettings

    service = OrderApplicationService(
        uow_factory=uow_factory,
        gateway=gateway,
        locks=locks,
        store=StoreSettings(expiry_sweep_batch_size=1),
    )
    paid = [await service.create_order(order_request()) for _ in range(2)]
    for created in paid:
        gateway.complete_checkout(created.order_ref)
    unpaid = await service.create_order(order_request())

    assert await service.expire_stale_orders(now=_after_window(300)) == 1

    assert (await service.get_order(unpaid.order_ref)).status == "failed"
    for created in paid:
        assert (await service.get_order(created.order_ref)).status == "awaiting_payment"


class _BusyLock:
    def hold(self, order_ref):
        from contextlib import asynccontextmanager

        from domain.common.exceptions import ServiceBusyException

        @asynccontextmanager
        async def _busy():
            raise ServiceBusyException("Order is being processed, please retry shortly")
            yield

        return _busy()


@pytest.mark.asyncio
async def test_locked_orders_are_left_for_the_next_sweep(uow_factory, gateway, catalog, order_request):
    from application.services.order_service import OrderApplicationService

    service = OrderApplicationService(uow_factory=uow_factory, gateway=gateway, locks=_BusyLock())
    created = await service.create_order(order_request())

    assert await service.expire_stale_orders(now=_after_window()) == 0
    assert (await service.get_order(created.order_ref)).status == "awaiting_payment"
