"""
Gateway error classification.

A failed GatewayResult is either ignorable (an exact match on one of the
caller's IgnoreRules; the caller keeps its last known good value) or
reportable (a GatewayReportableError carrying a payer-facing message).
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from application.ports.crm import AuditContext, AuditNotes
from application.ports.payment_gateway import GatewayError, GatewayResult, IgnoreRule
from core.logging_config import get_logger
from domain.payment.exceptions import GatewayReportableError
from shared.codes.payment_codes import PaymentCode, UNKNOWN_GATEWAY_ERROR


logger = get_logger(__name__)

NO_RESPONSE_MESSAGE = (
    "Stripe transaction response not received! "
    "Check the Logs section of your stripe.com account."
)


def is_ignorable(error: GatewayError, rules: Iterable[IgnoreRule]) -> bool:
    for rule in rules:
        if (
            error.error_class == rule.error_class
            and error.type == rule.type
            and error.message == rule.message
        ):
            return True
    return False


def reportable_message(error: GatewayError) -> str:
    message = (
        "Oops! Looks like there was an error. Payment Response: "
        f"Type: {error.type or ''} Code: {error.code or ''} Message: {error.message or ''}"
    )
    if not error.code:
        return f"Unknown Error: {message}"
    return message


class ErrorClassifier:
    def __init__(self, audit_notes: Optional[AuditNotes] = None) -> None:
        self.audit_notes = audit_notes

    async def check(
        self,
        result: GatewayResult,
        *,
        ignores: Iterable[IgnoreRule] = (),
        fallback: Any = None,
        audit: Optional[AuditContext] = None,
    ) -> Any:
        """Return the call's value, ``fallback`` for an ignored error, or raise."""
        if result.ok:
            return result.value
        error = result.error
        if is_ignorable(error, ignores):
            logger.info(
                "stripe_error_ignored",
                operation=result.operation.value,
                error_class=error.error_class,
                message=error.message,
            )
            return fallback
        raise await self.report(result, audit=audit)

    async def report(self, result: GatewayResult, *, audit: Optional[AuditContext] = None) -> GatewayReportableError:
        """Log the failure, write the decline note if any, and build the payer-facing error."""
        error = result.error
        operation = result.operation.value
        logger.error(
            "stripe_error",
            operation=operation,
            kind=error.kind.value,
            error_class=error.error_class,
            error_type=error.type,
            error_code=error.code,
            http_status=error.http_status,
            body=error.raw_body,
        )

        if error.is_transport:
            return GatewayReportableError(
                NO_RESPONSE_MESSAGE,
                gateway_code=UNKNOWN_GATEWAY_ERROR,
                operation=operation,
                code=PaymentCode.NO_RESPONSE,
            )

        if error.is_card_error:
            await self._record_decline(error, audit)

        return GatewayReportableError(
            reportable_message(error),
            gateway_code=error.code or UNKNOWN_GATEWAY_ERROR,
            gateway_type=error.type,
            operation=operation,
            code=PaymentCode.CARD_DECLINED if error.is_card_error else PaymentCode.GATEWAY_ERROR,
        )

    async def _record_decline(self, error: GatewayError, audit: Optional[AuditContext]) -> None:
        if self.audit_notes is None or audit is None:
            return
        try:
            await self.audit_notes.record_card_decline(audit, subject=error.type or "", note=error.code or "")
        except Exception as exc:
            # The decline itself is what the payer must see
            logger.warning(
                "decline_note_failed",
                contact_id=audit.contact_id,
                contribution_id=audit.contribution_id,
                error=str(exc),
            )
