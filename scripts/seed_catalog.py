#!/usr/bin/env python3
"""Load products into the catalog table.

Usage: python scripts/seed_catalog.py [catalog.json] [--currency INR] [--deactivate ID ...]

Prices in the file are major units; they are stored as minor units.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config import settings  # noqa: E402
from core.logging_config import configure_logging, get_logger  # noqa: E402
from domain.catalog.entity import Product  # noqa: E402
from domain.order.money import to_minor_units  # noqa: E402
from infrastructure.database import build_engine, build_session_factory, create_tables  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402

logger = get_logger("scripts.seed_catalog")


def load_products(path: Path, currency: str, deactivate: set[str]) -> list[Product]:
    rows = json.loads(path.read_text(encoding="utf-8"))
    products = []
    for row in rows:
        product_id = str(row["productId"])
        products.append(
            Product(
                product_id=product_id,
                name=row["name"],
                unit_price=to_minor_units(row["price"], currency, field="price"),
                currency=currency,
                active=bool(row.get("active", True)) and product_id not in deactivate,
            )
        )
    return products


async def seed(products: list[Product]) -> None:
    engine = build_engine(settings.database.url)
    try:
        await create_tables(bind=engine)
        async with SQLAlchemyUnitOfWork(session_factory=build_session_factory(engine)) as uow:
            for product in products:
                await uow.product_repository.upsert(product)
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", nargs="?", default=str(ROOT / "scripts" / "data" / "catalog.json"))
    parser.add_argument("--currency", default=settings.store.currency)
    parser.add_argument("--deactivate", nargs="*", default=[])
    args = parser.parse_args()

    configure_logging()
    products = load_products(Path(args.path), args.currency.upper(), set(args.deactivate))
    asyncio.run(seed(products))
    logger.info("catalog_seeded", count=len(products), database=settings.database.url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
