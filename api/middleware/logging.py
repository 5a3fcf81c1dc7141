"""
访问日志中间件

只记录方法、路径、状态码和耗时。请求体含卡 token 与 webhook 原文，从不记录。
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger("access")

QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", elapsed_ms=_elapsed_ms(started))
            raise

        elapsed = _elapsed_ms(started)
        # 402/409 是正常的支付失败结果，只有 5xx 记 warning
        level = logger.warning if response.status_code >= 500 else logger.info
        level("request_completed", status_code=response.status_code, elapsed_ms=elapsed)
        response.headers["X-Process-Time"] = f"{elapsed / 1000:.3f}"
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)
