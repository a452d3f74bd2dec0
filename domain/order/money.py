"""
金额换算 - 订单金额一律以最小货币单位（整数）保存
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from domain.common.exceptions import OrderValidationException

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND"}


def currency_exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Union[Decimal, int, float, str], currency: str, *, field: str = "amount") -> int:
    """把客户端提交的主单位金额换算为最小单位，拒绝超出精度的小数"""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise OrderValidationException(f"Invalid amount: {amount}", field=field) from exc
    if not value.is_finite():
        raise OrderValidationException(f"Invalid amount: {amount}", field=field)
    scaled = value * (Decimal(10) ** currency_exponent(currency))
    if scaled != scaled.to_integral_value():
        raise OrderValidationException(
            f"Amount {amount} has more precision than {currency} allows",
            field=field,
        )
    return int(scaled)


def format_minor_units(amount: int, currency: str) -> str:
    exponent = currency_exponent(currency)
    major = Decimal(amount) / (Decimal(10) ** exponent)
    return f"{currency.upper()} {major:.{exponent}f}"
