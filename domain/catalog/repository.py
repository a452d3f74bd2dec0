"""
商品目录仓储接口
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .entity import Product


class ProductRepository(ABC):
    """商品目录只读查询 + 运维导入"""

    @abstractmethod
    async def get_many(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """批量获取商品，返回 product_id -> Product（不存在的不返回）"""
        pass

    @abstractmethod
    async def get(self, product_id: str) -> Optional[Product]:
        """获取单个商品"""
        pass

    @abstractmethod
    async def upsert(self, product: Product) -> Product:
        """新增或更新商品（用于目录导入）"""
        pass
