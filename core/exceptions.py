"""
业务码 -> HTTP 状态映射与全局异常处理器

/api/orders 下的错误使用订单接口外形 {success: false, error, code, details}，
其余路由沿用统一 Response 包装。
"""
import traceback
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, OrderServiceException
from shared.codes import BusinessCode, OrderCode
from shared.codes.payment_codes import PaymentCode
from .response import error_response, order_error_response

logger = get_logger(__name__)

ORDER_API_PREFIX = "/api/orders"

_STATUS_BY_CODE = {
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,

    OrderCode.CATALOG_ERROR: http_status.HTTP_409_CONFLICT,
    OrderCode.UNKNOWN_ORDER: http_status.HTTP_404_NOT_FOUND,
    OrderCode.ORDER_NOT_PAYABLE: http_status.HTTP_409_CONFLICT,

    PaymentCode.PROVIDER_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PROVIDER_RECOVERABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.TIMEOUT: http_status.HTTP_504_GATEWAY_TIMEOUT,
}

_CODE_BY_HTTP_STATUS = {
    404: BusinessCode.NOT_FOUND,
    405: BusinessCode.PARAM_ERROR,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """未列出的业务码一律 400（订单校验、验签失败、金额不符等）。"""
    return _STATUS_BY_CODE.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _render(
    request: Request,
    status_code: int,
    *,
    code: int,
    message: str,
    error_type: str,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    request_id = _request_id(request)
    if request.url.path.startswith(ORDER_API_PREFIX):
        content = order_error_response(
            message=message, error_type=error_type, details=details, field=field, request_id=request_id
        )
    else:
        content = error_response(
            code=code, message=message, error_type=error_type, details=details, field=field, request_id=request_id
        ).model_dump(mode='json')
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        if isinstance(exc, OrderServiceException) and exc.security_sensitive:
            logger.warning(
                "order_security_failure",
                error_type=exc.error_type,
                details=exc.details,
                request_id=_request_id(request),
                security_sensitive=True,
            )
        return _render(
            request,
            business_code_to_http_status(exc.code),
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求体结构错误；field 取第一个错误的位置（去掉 body 前缀）"""
        errors = exc.errors()
        first = errors[0] if errors else {}
        return _render(
            request,
            http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": [
                {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")} for e in errors
            ]},
            field=".".join(str(loc) for loc in first.get("loc", [])[1:]),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _render(
            request,
            exc.status_code,
            code=_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", request_id=_request_id(request), error=str(exc), exc_info=True)
        # 仅调试模式返回堆栈
        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        return _render(
            request,
            http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
        )
