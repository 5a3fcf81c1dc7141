"""
Application service orchestrating payment submission use-cases.

This class depends only on application ports and DTOs. Gateway clients, CRM
collaborators and the unit of work are injected from the composition root
(API layer), keeping dependencies one-way.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from application.dtos.payments import (
    PaymentErrorDetail,
    PaymentOutcome,
    PaymentRequest,
    ProcessorPublicConfig,
    RecurringPaymentRequest,
)
from application.ports.crm import (
    AuditContext,
    AuditNotes,
    ContactDirectory,
    DiscountCodeLookup,
    MembershipTypeLookup,
    PriceFieldLookup,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.charge_submitter import ChargeSubmitter
from application.services.customer_reconciler import CustomerReconciler
from application.services.error_classifier import ErrorClassifier
from application.services.subscription_engine import SubscriptionEngine
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.exceptions import BusinessException, DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    ChargeRequest,
    GatewayAccountContext,
    PayerIdentity,
    RecurrenceSpec,
)
from domain.payment.exceptions import MissingCardToken, PayerEmailMissing, PaymentFatalError
from domain.payment.service import (
    charge_description,
    select_contact_id,
    select_payer_email,
    to_minor_units,
)


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentService:
    def __init__(
        self,
        *,
        settings: PaymentSettings,
        uow_factory: Callable[[], AbstractUnitOfWork],
        gateway_factory: Callable[[GatewayAccountContext], PaymentGateway],
        contacts: Optional[ContactDirectory] = None,
        discounts: Optional[DiscountCodeLookup] = None,
        prices: Optional[PriceFieldLookup] = None,
        memberships: Optional[MembershipTypeLookup] = None,
        audit_notes: Optional[AuditNotes] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self.uow_factory = uow_factory
        self.gateway_factory = gateway_factory
        self.contacts = contacts
        self.discounts = discounts
        self.prices = prices
        self.memberships = memberships
        self.audit_notes = audit_notes
        self.clock = clock

    async def submit_payment(self, request: PaymentRequest) -> PaymentOutcome:
        """Charge once, or hand over to the recurring path when the CRM flagged it."""
        if request.wants_recurring:
            return await self._guarded(request, self._charge_as_recurring)
        return await self._guarded(request, self._charge)

    async def submit_recurring_payment(self, request: RecurringPaymentRequest) -> PaymentOutcome:
        return await self._guarded(request, self._subscribe)

    async def _charge_as_recurring(self, request: PaymentRequest) -> PaymentOutcome:
        try:
            recurring = RecurringPaymentRequest.model_validate(request.model_dump(by_alias=True))
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(loc) for loc in first["loc"])
            raise DomainValidationException(
                f"Recurring payment field {field} is invalid: {first['msg']}",
                field=field,
            ) from exc
        return await self._subscribe(recurring)

    def public_config(self, processor_id: int) -> ProcessorPublicConfig:
        cfg = self.settings.processor(processor_id)
        return ProcessorPublicConfig(
            processor_id=processor_id,
            mode=cfg.mode.value,
            publishable_key=cfg.publishable_key,
        )

    async def _guarded(self, request: PaymentRequest, flow) -> PaymentOutcome:
        logger.info(
            "payment_submit_request",
            processor_id=request.processor_id,
            amount=str(request.amount),
            currency=request.currency,
            invoice_id=request.invoice_id,
            recurring=request.wants_recurring,
        )
        try:
            outcome = await flow(request)
        except BusinessException as exc:
            fatal = isinstance(exc, PaymentFatalError)
            (logger.error if fatal else logger.warning)(
                "payment_submit_failed",
                processor_id=request.processor_id,
                invoice_id=request.invoice_id,
                error_type=exc.error_type,
                code=exc.code,
                message=exc.message,
            )
            return PaymentOutcome(
                status="failed",
                processor_id=request.processor_id,
                error=PaymentErrorDetail.from_exception(exc),
            )
        logger.info(
            "payment_submit_response",
            processor_id=request.processor_id,
            invoice_id=request.invoice_id,
            status=outcome.status,
            trxn_id=outcome.trxn_id,
            subscription_id=outcome.subscription_id,
        )
        return outcome

    async def _payer(self, request: PaymentRequest) -> PayerIdentity:
        fields = request.payer_fields()
        email = select_payer_email(fields)
        contact_id = select_contact_id(fields)
        if not email and contact_id and self.contacts is not None:
            # Backend contributions carry a contact id instead of an email
            email = await self.contacts.get_email(contact_id)
        if not email:
            raise PayerEmailMissing()
        return PayerIdentity(email=email, contact_id=contact_id)

    def _components(self, ctx: GatewayAccountContext):
        gateway = self.gateway_factory(ctx)
        classifier = ErrorClassifier(self.audit_notes)
        return gateway, classifier, CustomerReconciler(gateway, self.uow_factory, classifier)

    async def _prepare(self, request: PaymentRequest):
        ctx = self.settings.account_context(request.processor_id)
        if not request.stripe_token:
            raise MissingCardToken()
        identity = await self._payer(request)
        audit = AuditContext(contact_id=request.payer_contact_id, contribution_id=request.contribution_id)
        gateway, classifier, reconciler = self._components(ctx)
        customer = await reconciler.resolve(
            identity,
            request.stripe_token,
            reuse_existing_card=request.reuses_existing_card,
            audit=audit,
        )
        return gateway, classifier, customer, audit

    async def _charge(self, request: PaymentRequest) -> PaymentOutcome:
        amount_minor = to_minor_units(request.amount)
        if amount_minor == 0:
            # Nothing to collect: no customer lookup, no gateway call
            return PaymentOutcome(status="skipped", processor_id=request.processor_id)

        gateway, classifier, customer, audit = await self._prepare(request)
        charge_request = ChargeRequest(
            amount_minor=amount_minor,
            currency=request.currency,
            description=charge_description(request.description, request.invoice_id),
            customer_id=customer.customer_id,
            card_token=request.stripe_token,
        )
        result = await ChargeSubmitter(gateway, classifier).charge(charge_request, audit=audit)
        if isinstance(result, ChargeRequest):
            return PaymentOutcome(status="skipped", processor_id=request.processor_id, customer_id=customer.customer_id)
        return PaymentOutcome(
            status="succeeded",
            processor_id=request.processor_id,
            trxn_id=result.trxn_id,
            fee_amount=result.fee_amount,
            net_amount=result.net_amount,
            customer_id=customer.customer_id,
        )

    async def _subscribe(self, request: RecurringPaymentRequest) -> PaymentOutcome:
        recurrence = RecurrenceSpec(
            amount_minor=to_minor_units(request.amount),
            currency=request.currency,
            interval_unit=request.frequency_unit,
            interval_count=request.frequency_interval,
            installments=request.installments,
            contribution_recur_id=request.contribution_recur_id,
            membership_type_id=request.select_membership[0] if request.select_membership else None,
            discount_code=request.discount_code,
            price_field_id=request.price_field_id,
            price_field_value_id=request.price_field_value_id,
        )
        gateway, classifier, customer, audit = await self._prepare(request)
        engine = SubscriptionEngine(
            gateway,
            self.uow_factory,
            classifier,
            discounts=self.discounts,
            prices=self.prices,
            memberships=self.memberships,
            clock=self.clock,
        )
        result = await engine.subscribe(recurrence, customer, audit=audit)
        return PaymentOutcome(
            status="succeeded",
            processor_id=request.processor_id,
            customer_id=customer.customer_id,
            subscription_id=result.subscription_id,
        )
