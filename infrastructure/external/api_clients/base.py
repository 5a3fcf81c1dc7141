"""
REST 客户端基类（httpx + tenacity）

GET 在超时、网络错误、429/5xx 时按指数退避重试；POST 只发送一次，
因为 CRM 侧的写入（备注、IPN）不是幂等的。
"""
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger


logger = get_logger(__name__)


class HTTPMethod(Enum):
    GET = "GET"
    POST = "POST"


@dataclass
class APIResponse:
    status_code: int
    data: Any
    raw_content: bytes
    elapsed_ms: float

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def json(self) -> Any:
        return self.data if self.data is not None else json.loads(self.raw_content)


class APIError(Exception):
    """请求失败：网络错误或非 2xx 响应"""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[APIResponse] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response

    def __str__(self):
        return f"{self.message} | Status: {self.status_code}" if self.status_code else self.message


class RetryableAPIError(APIError):
    """429 / 5xx：对只读请求可重试"""


RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_TRANSIENT = (httpx.TimeoutException, httpx.NetworkError, RetryableAPIError)


class BaseAPIClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API基础URL
            timeout: 单次请求超时（秒）
            max_retries: GET 请求的额外重试次数
            retry_delay: 首次退避（秒）
            headers: 附加请求头
            transport: 自定义 httpx transport（测试时注入 MockTransport）
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.default_headers = {"Accept": "application/json", **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self.default_headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _send(self, method: str, endpoint: str, **kwargs) -> APIResponse:
        started = time.perf_counter()
        response = await self.client.request(method, "/" + endpoint.lstrip("/"), **kwargs)
        elapsed_ms = (time.perf_counter() - started) * 1000

        data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except json.JSONDecodeError:
                data = None
        result = APIResponse(response.status_code, data, response.content, elapsed_ms)
        logger.debug("api_response", method=method, endpoint=endpoint, status_code=response.status_code, elapsed_ms=round(elapsed_ms, 1))

        if result.status_code in RETRY_STATUS_CODES:
            raise RetryableAPIError(f"{method} {endpoint} returned {result.status_code}", result.status_code, result)
        if result.is_error:
            raise APIError(f"{method} {endpoint} returned {result.status_code}", result.status_code, result)
        return result

    async def _request(
        self,
        method: Union[str, HTTPMethod],
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
    ) -> APIResponse:
        method = method.value if isinstance(method, HTTPMethod) else method.upper()
        attempts = self.max_retries + 1 if method == HTTPMethod.GET.value else 1
        try:
            async for attempt in AsyncRetrying(
                reraise=True,
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
                retry=retry_if_exception_type(_TRANSIENT),
            ):
                with attempt:
                    return await self._send(method, endpoint, params=params, data=data, json=json_data)
        except httpx.TimeoutException as exc:
            raise APIError(f"{method} {endpoint} timed out after {self.timeout}s") from exc
        except httpx.NetworkError as exc:
            raise APIError(f"{method} {endpoint} network error: {exc}") from exc

    async def get(self, endpoint: str, **kwargs) -> APIResponse:
        return await self._request(HTTPMethod.GET, endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> APIResponse:
        return await self._request(HTTPMethod.POST, endpoint, **kwargs)
