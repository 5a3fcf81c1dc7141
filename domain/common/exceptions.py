"""
领域异常

只携带业务码与结构化详情；HTTP 状态映射在 core.exceptions。
"""
from __future__ import annotations

from typing import Any, Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    error_type = "BusinessError"

    def __init__(
        self,
        code: int,
        message: str,
        *,
        error_type: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        if error_type:
            self.error_type = error_type
        self.details = details
        self.field = field

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"


class DomainValidationException(BusinessException):
    error_type = "DomainValidationError"

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(BusinessCode.PARAM_VALIDATION_ERROR, message, details=details, field=field)


class MappingConflict(BusinessException):
    """唯一键冲突：并发请求已写入同一条镜像记录"""

    error_type = "MappingConflict"

    def __init__(self, table: str, key: dict):
        super().__init__(BusinessCode.CONFLICT, f"{table} row already exists", details={"table": table, **key})
        self.table = table
        self.key = key
