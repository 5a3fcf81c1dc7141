"""
One-off charge submission with fee/net capture.
"""
from __future__ import annotations

from typing import Optional, Union

from application.ports.crm import AuditContext
from application.ports.payment_gateway import GatewayOperation, PaymentGateway
from application.services.error_classifier import ErrorClassifier
from core.logging_config import get_logger
from domain.payment.entity import ChargeRequest, ChargeResult
from domain.payment.service import from_minor_units


logger = get_logger(__name__)


class ChargeSubmitter:
    def __init__(self, gateway: PaymentGateway, classifier: ErrorClassifier) -> None:
        self.gateway = gateway
        self.classifier = classifier

    async def charge(
        self,
        request: ChargeRequest,
        *,
        audit: Optional[AuditContext] = None,
    ) -> Union[ChargeResult, ChargeRequest]:
        """Submit the charge; a zero amount returns ``request`` untouched."""
        if request.is_zero:
            logger.info("charge_skipped_zero_amount", processor_id=self.gateway.context.processor_id)
            return request

        payload = {
            "amount": request.amount_minor,
            "currency": request.currency,
            "description": request.description,
        }
        if request.customer_id:
            payload["customer"] = request.customer_id
        else:
            payload["source"] = request.card_token

        result = await self.gateway.execute(GatewayOperation.CREATE_CHARGE, payload)
        charge = await self.classifier.check(result, audit=audit)
        trxn_id = str(charge["id"])
        logger.info(
            "charge_created",
            trxn_id=trxn_id,
            amount_minor=request.amount_minor,
            currency=request.currency,
            processor_id=self.gateway.context.processor_id,
        )

        outcome = ChargeResult(trxn_id=trxn_id)
        balance_transaction_id = charge.get("balance_transaction")
        if not balance_transaction_id:
            return outcome

        balance = await self.gateway.execute(GatewayOperation.RETRIEVE_BALANCE_TRANSACTION, balance_transaction_id)
        if not balance.ok:
            logger.warning(
                "balance_transaction_unavailable",
                trxn_id=trxn_id,
                balance_transaction_id=balance_transaction_id,
                error_class=balance.error.error_class,
            )
            return outcome
        outcome.fee_amount = from_minor_units(balance.value["fee"])
        outcome.net_amount = from_minor_units(balance.value["net"])
        return outcome
