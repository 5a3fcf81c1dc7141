"""
统一响应信封

Every HTTP answer is `{code, message, data, error}`. Failed payment outcomes
still carry `data` so the CRM can read status and ids from one place.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)

    @field_serializer("timestamp")
    def _iso_z(self, ts: datetime) -> str:
        """UTC ISO8601，以 Z 结尾"""
        ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")


class Response(BaseModel):
    code: int
    message: str
    data: Any = None
    error: Optional[ErrorDetail] = None


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    return Response(code=code, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    data: Any = None,
) -> Response:
    """
    创建错误响应

    Args:
        code: 业务状态码（BusinessCode / PaymentCode）
        message: 面向调用方的错误消息
        error_type: 异常类型名
        details: 结构化详情（如 gateway_code、fatal）
        field: 出错字段
        request_id: 追踪ID
        data: 失败时仍需返回的数据（例如支付结果）
    """
    return Response(
        code=code,
        message=message,
        data=data,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
