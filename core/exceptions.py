"""
业务码到 HTTP 状态的映射与全局异常处理器
"""
import traceback
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode

from .response import error_response


_HTTP_STATUS = {
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    # The payer's card or request was refused by the gateway
    PaymentCode.GATEWAY_ERROR: http_status.HTTP_402_PAYMENT_REQUIRED,
    PaymentCode.CARD_DECLINED: http_status.HTTP_402_PAYMENT_REQUIRED,
    # The gateway could not be reached, or local state could not be reconciled with it
    PaymentCode.NO_RESPONSE: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.FATAL: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PROCESSOR_NOT_CONFIGURED: http_status.HTTP_404_NOT_FOUND,
    PaymentCode.CRM_REQUEST_FAILED: http_status.HTTP_503_SERVICE_UNAVAILABLE,
}

_HTTP_TO_CODE = {
    404: BusinessCode.NOT_FOUND,
    405: BusinessCode.BUSINESS_ERROR,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """未列出的业务码一律 400。"""
    return _HTTP_STATUS.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _json(status_code: int, response, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    """注册全局异常处理器"""

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        response = error_response(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=_request_id(request),
        )
        return _json(business_code_to_http_status(exc.code), response)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [{k: v for k, v in e.items() if k not in ("ctx", "input")} for e in exc.errors()]
        first = errors[0] if errors else {}
        response = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": errors},
            # loc[0] is "body" / "query" / "path"
            field=".".join(str(loc) for loc in first.get("loc", [])[1:]),
            request_id=_request_id(request),
        )
        return _json(http_status.HTTP_422_UNPROCESSABLE_ENTITY, response)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        response = error_response(
            code=_HTTP_TO_CODE.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _json(exc.status_code, response, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # 500 makes Stripe redeliver a webhook whose processing crashed
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)
        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )
        return _json(http_status.HTTP_500_INTERNAL_SERVER_ERROR, response)
