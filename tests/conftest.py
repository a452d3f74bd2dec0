"""Pytest bootstrap configuration.

Environment variables are set before application settings are imported;
every test gets its own SQLite database and in-memory processor.
"""
import functools
import os
import tempfile

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", f"sqlite+aiosqlite:///{tempfile.mkdtemp()}/checkout.db")
os.environ.setdefault("PAYMENT__DEFAULT_PROVIDER", "fake")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from application.dtos.orders import CreateOrderRequest  # noqa: E402
from application.services.order_service import OrderApplicationService  # noqa: E402
from domain.catalog.entity import Product  # noqa: E402
from infrastructure.database import build_engine, build_session_factory, create_tables, drop_tables  # noqa: E402
from infrastructure.external.payments.fake_client import FakeProcessorClient  # noqa: E402
from infrastructure.locks import KeyedAsyncLock  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402

TEST_KEY_ID = "rzp_test_key"
TEST_SECRET = "test_secret"

CATALOG = [
    Product(product_id="1", name="Rose Glow Serum", unit_price=129900, currency="INR"),
    Product(product_id="2", name="Velvet Matte Lipstick", unit_price=59900, currency="INR"),
    Product(product_id="9", name="Retired Palette", unit_price=99900, currency="INR", active=False),
]


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    engine = build_engine(database_url)
    await create_tables(bind=engine)
    yield engine
    await drop_tables(bind=engine)
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return functools.partial(SQLAlchemyUnitOfWork, session_factory=build_session_factory(engine))


@pytest_asyncio.fixture
async def catalog(uow_factory):
    async with uow_factory() as uow:
        for product in CATALOG:
            await uow.product_repository.upsert(product)
    return {p.product_id: p for p in CATALOG}


@pytest.fixture
def gateway():
    return FakeProcessorClient(key_id=TEST_KEY_ID, key_secret=TEST_SECRET)


@pytest.fixture
def locks():
    return KeyedAsyncLock()


@pytest.fixture
def order_service(uow_factory, gateway, locks, catalog):
    return OrderApplicationService(uow_factory=uow_factory, gateway=gateway, locks=locks)


def make_order_request(**overrides) -> CreateOrderRequest:
    payload = {
        "amount": "1898.00",
        "currency": "INR",
        "items": [
            {"productId": "1", "name": "Rose Glow Serum", "price": "1299.00", "quantity": 1},
            {"productId": "2", "name": "Velvet Matte Lipstick", "price": "599.00", "quantity": 1},
        ],
        "customer": {
            "name": "Asha Rao",
            "email": "asha@example.com",
            "phone": "+91 98765 43210",
            "address": "12 MG Road, Bengaluru",
        },
    }
    payload.update(overrides)
    return CreateOrderRequest.model_validate(payload)


@pytest.fixture
def order_request():
    return make_order_request
