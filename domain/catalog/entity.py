"""
商品目录实体 - 服务端权威价格
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from domain.common.exceptions import DomainValidationException


@dataclass
class Product:
    product_id: str
    name: str
    unit_price: int  # 最小货币单位
    currency: str
    active: bool = True
    id: Optional[int] = None

    def __post_init__(self):
        self.product_id = str(self.product_id)
        self.currency = (self.currency or "").upper()
        if self.unit_price < 0:
            raise DomainValidationException(
                f"商品价格不能为负: {self.unit_price}",
                field="unit_price",
            )
