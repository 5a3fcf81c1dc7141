"""
Stripe adapter using the official stripe-python SDK.

Notes on SDK usage:
- Every request carries the processor's secret key via the `api_key` kwarg;
  nothing assigns `stripe.api_key`, so two processors (or live and test mode)
  can be served by the same process.
- Errors are the top-level `stripe.StripeError` hierarchy (stripe>=8).
  `APIConnectionError` means no response was received.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import stripe

from application.ports.payment_gateway import GatewayError, GatewayErrorKind, GatewayOperation
from domain.payment.entity import GatewayAccountContext
from domain.payment.exceptions import WebhookSignatureError
from infrastructure.external.payments.base import BaseGatewayClient
from core.settings import payment_settings
from core.logging_config import get_logger


logger = get_logger(__name__)

_sdk_configured = False


def configure_stripe_sdk() -> None:
    """Process-wide SDK options: app info and HTTP timeout. No credentials."""
    global _sdk_configured
    if _sdk_configured:
        return
    info = payment_settings.app_info
    stripe.set_app_info(info.name, version=info.version, url=info.url)
    stripe.default_http_client = stripe.RequestsClient(timeout=payment_settings.timeouts.total)
    _sdk_configured = True


class StripeGatewayClient(BaseGatewayClient):
    provider = "stripe"

    def __init__(self, context: GatewayAccountContext):
        super().__init__(
            context,
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        configure_stripe_sdk()

    def _dispatch(self, operation: GatewayOperation, payload: Any) -> Any:
        key = self.context.secret_key
        if operation == GatewayOperation.CREATE_CUSTOMER:
            return stripe.Customer.create(api_key=key, **payload)
        if operation == GatewayOperation.UPDATE_CUSTOMER:
            fields = dict(payload)
            customer_id = fields.pop("id")
            return stripe.Customer.modify(customer_id, api_key=key, **fields)
        if operation == GatewayOperation.RETRIEVE_CUSTOMER:
            customer = stripe.Customer.retrieve(payload, api_key=key)
            # A deleted customer is still retrievable; treat it as missing
            if customer.get("deleted"):
                raise stripe.InvalidRequestError(f"No such customer: '{payload}'", param="id", code="resource_missing")
            return customer
        if operation == GatewayOperation.CREATE_CHARGE:
            return stripe.Charge.create(api_key=key, **payload)
        if operation == GatewayOperation.RETRIEVE_BALANCE_TRANSACTION:
            return stripe.BalanceTransaction.retrieve(payload, api_key=key)
        if operation == GatewayOperation.CREATE_PRODUCT:
            return stripe.Product.create(api_key=key, **payload)
        if operation == GatewayOperation.CREATE_PLAN:
            return stripe.Plan.create(api_key=key, **payload)
        if operation == GatewayOperation.CREATE_SUBSCRIPTION:
            return stripe.Subscription.create(api_key=key, **payload)
        if operation == GatewayOperation.RETRIEVE_EVENT:
            event = stripe.Event.retrieve(payload, api_key=key)
            return event.to_dict() if hasattr(event, "to_dict") else dict(event)
        raise ValueError(f"Unsupported gateway operation: {operation}")

    def _to_gateway_error(self, exc: Exception) -> Optional[GatewayError]:
        if isinstance(exc, stripe.APIConnectionError):
            return GatewayError(
                kind=GatewayErrorKind.TRANSPORT,
                error_class=type(exc).__name__,
                message=getattr(exc, "user_message", None) or str(exc),
            )
        if not isinstance(exc, stripe.StripeError):
            return None
        body = (getattr(exc, "json_body", None) or {}).get("error") or {}
        return GatewayError(
            kind=GatewayErrorKind.API,
            error_class=type(exc).__name__,
            type=body.get("type"),
            code=getattr(exc, "code", None) or body.get("code"),
            message=body.get("message") or getattr(exc, "user_message", None) or str(exc),
            raw_body=body or None,
            http_status=getattr(exc, "http_status", None),
        )

    def construct_event(self, headers: dict[str, Any], body: bytes) -> dict[str, Any]:
        secret = self.context.webhook_secret
        if not secret:
            raise WebhookSignatureError("Webhook signing secret is not configured", processor_id=self.context.processor_id)
        lowered = {k.lower(): v for k, v in headers.items()}
        sig = lowered.get("stripe-signature")
        if not sig:
            raise WebhookSignatureError("Missing Stripe-Signature header", processor_id=self.context.processor_id)
        try:
            stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=payment_settings.webhook.tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("webhook_signature_invalid", processor_id=self.context.processor_id, error=str(exc))
            raise WebhookSignatureError(str(exc), processor_id=self.context.processor_id) from exc
        # The verified body is the event; keep it as plain JSON for the event log
        return json.loads(body)
