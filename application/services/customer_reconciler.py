"""
Payer -> gateway customer reconciliation.

After a successful resolve exactly one CustomerMapping row exists for
(email, is_live, processor_id) and it names a customer the gateway returned
during this call.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from application.ports.crm import AuditContext
from application.ports.payment_gateway import GatewayOperation, PaymentGateway
from application.services.error_classifier import ErrorClassifier
from core.logging_config import get_logger
from domain.common.exceptions import MappingConflict
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import CustomerMapping, PayerIdentity, ResolvedCustomer
from domain.payment.exceptions import PaymentFatalError
from domain.payment.service import CUSTOMER_DESCRIPTION


logger = get_logger(__name__)

STRIPE_DOWN_REASON = "There was an error saving new customer within Stripe. Is Stripe down?"


def _customer_id(customer: Any) -> Optional[str]:
    if customer is None:
        return None
    if isinstance(customer, dict):
        return customer.get("id")
    return getattr(customer, "id", None)


class CustomerReconciler:
    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: Callable[[], AbstractUnitOfWork],
        classifier: ErrorClassifier,
    ) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory
        self.classifier = classifier

    @property
    def _scope(self) -> dict[str, Any]:
        ctx = self.gateway.context
        return {"is_live": ctx.is_live, "processor_id": ctx.processor_id}

    async def resolve(
        self,
        identity: PayerIdentity,
        card_token: Optional[str],
        *,
        reuse_existing_card: bool = False,
        audit: Optional[AuditContext] = None,
    ) -> ResolvedCustomer:
        async with self.uow_factory() as uow:
            mapping = await uow.customers.get(identity.email, **self._scope)

        if mapping is None:
            return await self._create(identity, card_token, audit)

        retrieved = await self.gateway.execute(GatewayOperation.RETRIEVE_CUSTOMER, mapping.customer_id)
        if not retrieved.ok:
            logger.warning(
                "customer_retrieve_failed",
                customer_id=mapping.customer_id,
                error_class=retrieved.error.error_class,
                error_code=retrieved.error.code,
                **self._scope,
            )
            return await self._repair(identity, mapping, card_token, audit)

        customer = retrieved.value
        if not reuse_existing_card and card_token:
            saved = await self.gateway.execute(
                GatewayOperation.UPDATE_CUSTOMER,
                {"id": mapping.customer_id, "source": card_token},
            )
            customer = await self.classifier.check(saved, audit=audit)
        return ResolvedCustomer(customer_id=mapping.customer_id, customer=customer)

    def _create_payload(self, identity: PayerIdentity, card_token: Optional[str]) -> dict[str, Any]:
        payload = {"description": CUSTOMER_DESCRIPTION, "email": identity.email}
        if card_token:
            payload["source"] = card_token
        return payload

    async def _create(
        self,
        identity: PayerIdentity,
        card_token: Optional[str],
        audit: Optional[AuditContext],
    ) -> ResolvedCustomer:
        result = await self.gateway.execute(GatewayOperation.CREATE_CUSTOMER, self._create_payload(identity, card_token))
        customer = await self.classifier.check(result, audit=audit)
        customer_id = _customer_id(customer)
        if not customer_id:
            raise PaymentFatalError(STRIPE_DOWN_REASON)

        try:
            async with self.uow_factory() as uow:
                await uow.customers.add(CustomerMapping(email=identity.email, customer_id=customer_id, **self._scope))
        except MappingConflict:
            # A concurrent submission for the same payer inserted first; its row stays.
            async with self.uow_factory() as uow:
                existing = await uow.customers.get(identity.email, **self._scope)
            logger.warning(
                "customer_mapping_race_lost",
                kept_customer_id=existing.customer_id if existing else None,
                created_customer_id=customer_id,
                **self._scope,
            )
        return ResolvedCustomer(customer_id=customer_id, customer=customer, created=True)

    async def _repair(
        self,
        identity: PayerIdentity,
        stale: CustomerMapping,
        card_token: Optional[str],
        audit: Optional[AuditContext],
    ) -> ResolvedCustomer:
        result = await self.gateway.execute(GatewayOperation.CREATE_CUSTOMER, self._create_payload(identity, card_token))
        customer_id = _customer_id(result.value) if result.ok else None
        if not customer_id:
            if not result.ok:
                await self.classifier.report(result, audit=audit)
            raise PaymentFatalError(STRIPE_DOWN_REASON, details={"stale_customer_id": stale.customer_id})

        try:
            async with self.uow_factory() as uow:
                await uow.customers.replace(
                    stale.customer_id,
                    CustomerMapping(email=identity.email, customer_id=customer_id, **self._scope),
                )
        except MappingConflict:
            # A concurrent repair replaced the stale row first; its row stays.
            async with self.uow_factory() as uow:
                existing = await uow.customers.get(identity.email, **self._scope)
            logger.warning(
                "customer_mapping_repair_race_lost",
                stale_customer_id=stale.customer_id,
                kept_customer_id=existing.customer_id if existing else None,
                created_customer_id=customer_id,
                **self._scope,
            )
        else:
            logger.info(
                "customer_mapping_repaired",
                stale_customer_id=stale.customer_id,
                customer_id=customer_id,
                **self._scope,
            )
        return ResolvedCustomer(customer_id=customer_id, customer=result.value, created=True)
