"""
Payment domain exceptions.

Reportable errors are returned to the payer as a single message; fatal errors
mean local state could not be reconciled and the operation must stop.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


FATAL_PREFIX = "Payment could not be completed and processing could not safely continue"


class GatewayReportableError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        gateway_code: Optional[str | int] = None,
        gateway_type: Optional[str] = None,
        operation: Optional[str] = None,
        code: int = PaymentCode.GATEWAY_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            error_type="GatewayReportableError",
            details={
                "gateway_code": gateway_code,
                "gateway_type": gateway_type,
                "operation": operation,
            },
        )
        self.gateway_code = gateway_code
        self.gateway_type = gateway_type
        self.operation = operation


class MissingCardToken(BusinessException):
    """表单未带回一次性卡 token；本地校验失败，未调用网关"""

    def __init__(self):
        super().__init__(
            code=PaymentCode.MISSING_CARD_TOKEN,
            message=(
                "Unable to complete payment! Please report this to the site administrator "
                "with a description of what you were trying to do."
            ),
            error_type="MissingCardToken",
            field="stripe_token",
        )


class PaymentFatalError(BusinessException):
    def __init__(self, reason: str, *, code: int = PaymentCode.FATAL, details: Optional[dict] = None):
        super().__init__(
            code=code,
            message=f"{FATAL_PREFIX}: {reason}",
            error_type="PaymentFatalError",
            details=details,
        )
        self.reason = reason


class PayerEmailMissing(PaymentFatalError):
    def __init__(self):
        super().__init__("No email address found. Please report this issue.", code=PaymentCode.PAYER_EMAIL_MISSING)


class ProcessorNotConfigured(BusinessException):
    def __init__(self, processor_id: int, problems: Optional[list[str]] = None):
        message = f"Payment processor {processor_id} is not configured"
        if problems:
            message = f"{message}: {' '.join(problems)}"
        super().__init__(
            code=PaymentCode.PROCESSOR_NOT_CONFIGURED,
            message=message,
            error_type="ProcessorNotConfigured",
            details={"processor_id": processor_id, "problems": problems or []},
        )


class ReplayRejected(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.REPLAY_REJECTED,
            message=message,
            error_type="ReplayRejected",
            details=details,
        )


class WebhookSignatureError(BusinessException):
    def __init__(self, message: str, *, processor_id: Optional[int] = None):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="WebhookSignatureError",
            details={"processor_id": processor_id},
        )


class CRMRequestFailed(BusinessException):
    """CRM 协作方调用失败（网络、5xx 或 is_error=1）"""

    def __init__(self, message: str, *, status_code: Optional[int] = None, operation: Optional[str] = None):
        super().__init__(
            code=PaymentCode.CRM_REQUEST_FAILED,
            message=message,
            error_type="CRMRequestFailed",
            details={"status_code": status_code, "operation": operation},
        )
        self.status_code = status_code
        self.operation = operation
