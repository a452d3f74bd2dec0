"""
请求日志中间件

每个请求记录开始与结束两行（状态码、耗时）。调试环境下附带脱敏后的 JSON 请求体：
支付签名、密钥与买家联系方式不落日志。
"""
import json
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)

SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

# 任意嵌套层级匹配
SENSITIVE_FIELDS = {
    "secret", "key_secret", "api_key", "token",
    "signature", "razorpay_signature",
    "email", "phone", "contact",
}


def redact(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: ("***" if str(k).lower() in SENSITIVE_FIELDS else redact(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [redact(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG
        self.max_body_bytes = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        info = {"method": request.method, "path": request.url.path}
        if request.query_params:
            info["query_params"] = dict(request.query_params)
        if self.log_body and request.method == "POST":
            info["body"] = await self._body_for_log(request)
        logger.info("request_started", **info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - started,
                error_type=type(exc).__name__,
                exc_info=True,
                **info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_completed(response, duration, info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _body_for_log(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        if "application/json" not in request.headers.get("content-type", "").lower():
            return {"size": len(body)}
        try:
            return redact(json.loads(body[: self.max_body_bytes]))
        except ValueError:
            # 截断或非法 JSON：只记录大小
            return {"truncated": True, "size": len(body)}

    @staticmethod
    def _log_completed(response: Response, duration: float, info: dict):
        status_code = response.status_code
        if status_code < 400:
            log = logger.info
        elif status_code < 500:
            log = logger.warning
        else:
            log = logger.error
        log("request_completed", status_code=status_code, duration=round(duration, 4), **info)
