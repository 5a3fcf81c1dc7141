"""
Request ID 中间件

CRM 回调与 Stripe webhook 共用同一追踪ID：优先透传调用方的 X-Request-ID，
否则生成新的。ID 同时写入 request.state（异常处理器读取）和 structlog 上下文。
"""
import re
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


# 只透传形如 uuid / 短 token 的ID，其余重新生成，避免把任意请求头写进日志
_SAFE_ID = re.compile(r"^[A-Za-z0-9._\-]{1,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    def _resolve(self, request: Request) -> str:
        incoming = request.headers.get(self.header_name)
        if incoming and _SAFE_ID.match(incoming):
            return incoming
        return uuid.uuid4().hex

    async def dispatch(self, request: Request, call_next):
        request_id = self._resolve(request)
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)
        if "stripe-signature" in request.headers:
            structlog.contextvars.bind_contextvars(source="stripe_webhook")

        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


def get_request_id() -> str | None:
    """当前请求的request_id；不在请求上下文中返回 None"""
    return structlog.contextvars.get_contextvars().get("request_id")
