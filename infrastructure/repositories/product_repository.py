"""
商品目录仓储实现
"""
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import Product
from domain.catalog.repository import ProductRepository
from infrastructure.models.product import ProductModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductModel) -> Product:
        return Product(
            id=model.id,
            product_id=model.product_id,
            name=model.name,
            unit_price=model.unit_price,
            currency=model.currency,
            active=model.active,
        )

    async def get_many(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = {str(pid) for pid in product_ids}
        if not ids:
            return {}
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.product_id.in_(ids))
        )
        return {m.product_id: self._to_entity(m) for m in result.scalars().all()}

    async def get(self, product_id: str) -> Optional[Product]:
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.product_id == str(product_id))
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def upsert(self, product: Product) -> Product:
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.product_id == product.product_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            model = ProductModel(product_id=product.product_id)
            self.session.add(model)
        model.name = product.name
        model.unit_price = product.unit_price
        model.currency = product.currency
        model.active = product.active
        await self.session.flush()
        logger.info("catalog_product_upserted", product_id=product.product_id, unit_price=product.unit_price)
        return self._to_entity(model)
