"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode, OrderCode
from shared.codes.order_codes import SECURITY_SENSITIVE_CODES


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderServiceException(BusinessException):
    """订单服务异常基类，HTTP 层以 {success: false, ...} 结构返回"""

    @property
    def security_sensitive(self) -> bool:
        return self.code in SECURITY_SENSITIVE_CODES


class OrderValidationException(OrderServiceException):
    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(
            code=OrderCode.ORDER_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


class CatalogException(OrderServiceException):
    """商品不存在或价格已变化，客户端需刷新购物车后重试"""

    def __init__(self, message: str, *, product_id: str | None = None, details: dict | None = None):
        full_details = {"product_id": product_id} if product_id else {}
        if details:
            full_details.update(details)
        super().__init__(
            code=OrderCode.CATALOG_ERROR,
            message=message,
            error_type="CatalogError",
            details=full_details or None,
        )


class UnknownOrderException(OrderServiceException):
    def __init__(self, order_ref: str):
        super().__init__(
            code=OrderCode.UNKNOWN_ORDER,
            message=f"Order {order_ref} not found",
            error_type="UnknownOrder",
            details={"order_id": order_ref},
        )


class VerificationFailedException(OrderServiceException):
    def __init__(self, order_ref: str, reason: str):
        super().__init__(
            code=OrderCode.VERIFICATION_FAILED,
            message="Payment verification failed",
            error_type="VerificationFailed",
            details={"order_id": order_ref, "reason": reason},
        )
        self.reason = reason


class AmountMismatchException(OrderServiceException):
    def __init__(self, order_ref: str, *, expected: tuple[int, str], actual: tuple[int | None, str | None]):
        super().__init__(
            code=OrderCode.AMOUNT_MISMATCH,
            message="Payment amount does not match the order",
            error_type="AmountMismatch",
            details={
                "order_id": order_ref,
                "expected_amount": expected[0],
                "expected_currency": expected[1],
                "actual_amount": actual[0],
                "actual_currency": actual[1],
            },
        )


class OrderNotPayableException(OrderServiceException):
    def __init__(self, order_ref: str, status: str):
        super().__init__(
            code=OrderCode.ORDER_NOT_PAYABLE,
            message=f"Order {order_ref} is {status} and can no longer change",
            error_type="OrderNotPayable",
            details={"order_id": order_ref, "status": status},
        )


class ServiceBusyException(BusinessException):
    """暂时无法处理（如订单锁等待超时），客户端稍后重试"""

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message=message,
            error_type="ServiceBusy",
            details=details,
        )
