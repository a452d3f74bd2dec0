"""
JSON-over-HTTP 客户端基类

- 超时、网络错误和 5xx 自动重试（tenacity 指数退避）
- 非 2xx 响应统一转换为 APIError，保留解析后的响应体
- transport 可注入，测试中使用 ASGITransport / MockTransport
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T', bound=BaseModel)

RETRY_STATUS_CODES = {500, 502, 503, 504}


@dataclass
class APIResponse:
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def json(self) -> Any:
        if self.data is not None:
            return self.data
        return json.loads(self.raw_content)


class APIError(Exception):
    """请求失败；response 为 None 表示没有拿到响应"""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[APIResponse] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        self.request_id = response.request_id if response else None
        super().__init__(message)

    def __str__(self):
        parts = [self.message]
        if self.status_code:
            parts.append(f"Status: {self.status_code}")
        if self.request_id:
            parts.append(f"Request ID: {self.request_id}")
        return " | ".join(parts)


class APIConnectionError(APIError):
    """超时或网络不可达"""


class _TransientStatus(APIError):
    pass


def _error_message(response: APIResponse) -> str:
    if isinstance(response.data, dict):
        for key in ("error", "message", "detail"):
            if response.data.get(key):
                return str(response.data[key])
    return f"API request failed with status {response.status_code}"


class BaseAPIClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: 服务根地址
            timeout: 单次请求超时（秒）
            max_retries: 首次请求之外的最大重试次数
            retry_delay: 退避基数（秒）
            headers: 默认请求头
            transport: 自定义传输层
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "Checkout-Client/1.0",
            **(headers or {}),
        }
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _send(self, method: str, endpoint: str, json_data: Any, headers: Dict[str, str]) -> APIResponse:
        started = time.perf_counter()
        response = await self._get_client().request(method, "/" + endpoint.lstrip('/'), json=json_data, headers=headers)
        data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except json.JSONDecodeError:
                data = None
        api_response = APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            raw_content=response.content,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            request_id=response.headers.get("x-request-id"),
        )
        logger.debug(
            "api_response",
            method=method,
            endpoint=endpoint,
            status_code=api_response.status_code,
            elapsed_ms=round(api_response.elapsed_ms, 2),
            request_id=api_response.request_id,
        )
        if api_response.status_code in RETRY_STATUS_CODES:
            raise _TransientStatus(_error_message(api_response), api_response.status_code, api_response)
        if api_response.is_error:
            raise APIError(_error_message(api_response), api_response.status_code, api_response)
        return api_response

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Union[Dict[str, Any], BaseModel]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """发送请求；同一组 headers 用于每次重试"""
        if isinstance(json_data, BaseModel):
            json_data = json_data.model_dump(mode="json", by_alias=True, exclude_none=True)
        request_headers = {**self.default_headers, **(headers or {})}

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, _TransientStatus)),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(method, endpoint, json_data, request_headers)
        except httpx.TimeoutException as exc:
            raise APIConnectionError(f"Request timeout after {self.timeout}s") from exc
        except httpx.NetworkError as exc:
            raise APIConnectionError(f"Network error: {exc}") from exc
        except httpx.TransportError as exc:
            # 协议错误等：连接已建立但没有拿到可用响应
            raise APIConnectionError(f"Transport error: {type(exc).__name__}: {exc}") from exc
        except _TransientStatus as exc:
            raise APIError(exc.message, exc.status_code, exc.response) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    async def post_typed(self, endpoint: str, response_model: Type[T], **kwargs) -> T:
        response = await self._request("POST", endpoint, **kwargs)
        try:
            return response_model.model_validate(response.json())
        except (ValidationError, ValueError) as exc:
            raise APIError(
                f"Unexpected response body from {endpoint}", response.status_code, response
            ) from exc
