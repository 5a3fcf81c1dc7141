"""
Recurring contributions: discount credit, idempotent plan creation and the
subscription mirror.

A subscription never yields a transaction id here; the first invoice is
completed later through notification replay.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.ports.crm import AuditContext, DiscountCodeLookup, MembershipTypeLookup, PriceFieldLookup
from application.ports.payment_gateway import GatewayOperation, PaymentGateway, PLAN_ALREADY_EXISTS
from application.services.error_classifier import ErrorClassifier
from core.logging_config import get_logger
from domain.common.exceptions import MappingConflict
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    PlanMapping,
    RecurrenceSpec,
    ResolvedCustomer,
    SubscriptionMapping,
    SubscriptionResult,
)
from domain.payment.service import apply_discount, compute_end_time, compute_plan_id, product_name
from shared.codes.payment_codes import DISCOUNT_PERCENTAGE


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionEngine:
    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: Callable[[], AbstractUnitOfWork],
        classifier: ErrorClassifier,
        *,
        discounts: Optional[DiscountCodeLookup] = None,
        prices: Optional[PriceFieldLookup] = None,
        memberships: Optional[MembershipTypeLookup] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory
        self.classifier = classifier
        self.discounts = discounts
        self.prices = prices
        self.memberships = memberships
        self.clock = clock

    async def subscribe(
        self,
        recurrence: RecurrenceSpec,
        customer: ResolvedCustomer,
        *,
        audit: Optional[AuditContext] = None,
    ) -> SubscriptionResult:
        ctx = self.gateway.context
        amount_minor = await self._apply_discount(recurrence, customer, audit)

        membership_name = ""
        if recurrence.membership_type_id and self.memberships is not None:
            membership_name = await self.memberships.get_name(recurrence.membership_type_id) or ""

        plan_id = compute_plan_id(
            amount_minor=amount_minor,
            currency=recurrence.currency,
            interval_unit=recurrence.interval_unit,
            interval_count=recurrence.interval_count,
            is_live=ctx.is_live,
            membership_type_id=recurrence.membership_type_id,
        )
        await self._ensure_plan(plan_id, recurrence, amount_minor, membership_name, audit)

        created = await self.gateway.execute(
            GatewayOperation.CREATE_SUBSCRIPTION,
            {
                "customer": customer.customer_id,
                "items": [{"plan": plan_id}],
                "proration_behavior": "none",
            },
        )
        subscription = await self.classifier.check(created, audit=audit)
        subscription_id = str(subscription["id"])

        end_time = compute_end_time(
            self.clock(),
            interval_unit=recurrence.interval_unit,
            interval_count=recurrence.interval_count,
            installments=recurrence.installments,
        )
        async with self.uow_factory() as uow:
            await uow.subscriptions.add(
                SubscriptionMapping(
                    subscription_id=subscription_id,
                    customer_id=customer.customer_id,
                    contribution_recur_id=recurrence.contribution_recur_id,
                    processor_id=ctx.processor_id,
                    is_live=ctx.is_live,
                    end_time=end_time,
                )
            )
        logger.info(
            "subscription_created",
            subscription_id=subscription_id,
            plan_id=plan_id,
            contribution_recur_id=recurrence.contribution_recur_id,
            end_time=end_time,
        )
        return SubscriptionResult(subscription_id=subscription_id, plan_id=plan_id, end_time=end_time)

    async def _apply_discount(
        self,
        recurrence: RecurrenceSpec,
        customer: ResolvedCustomer,
        audit: Optional[AuditContext],
    ) -> int:
        """Return the plan amount; a credit, when due, is set as the customer's balance."""
        if not recurrence.discount_code or self.discounts is None:
            return recurrence.amount_minor
        discount = await self.discounts.get_discount(recurrence.discount_code)
        if discount is None:
            return recurrence.amount_minor

        listed_amount = None
        if (
            discount.amount_type == DISCOUNT_PERCENTAGE
            and recurrence.price_field_value_id
            and self.prices is not None
        ):
            listed_amount = await self.prices.get_listed_amount(
                recurrence.price_field_value_id, recurrence.price_field_id
            )

        adjustment = apply_discount(
            recurrence.amount_minor,
            amount_type=discount.amount_type,
            discount_amount=discount.amount,
            listed_amount=listed_amount,
        )
        if adjustment.credit_minor > 0:
            saved = await self.gateway.execute(
                GatewayOperation.UPDATE_CUSTOMER,
                {"id": customer.customer_id, "balance": -adjustment.credit_minor},
            )
            await self.classifier.check(saved, audit=audit)
            logger.info(
                "discount_credit_applied",
                customer_id=customer.customer_id,
                discount_code=recurrence.discount_code,
                credit_minor=adjustment.credit_minor,
                plan_amount_minor=adjustment.plan_amount_minor,
            )
        return adjustment.plan_amount_minor

    async def _ensure_plan(
        self,
        plan_id: str,
        recurrence: RecurrenceSpec,
        amount_minor: int,
        membership_name: str,
        audit: Optional[AuditContext],
    ) -> None:
        ctx = self.gateway.context
        async with self.uow_factory() as uow:
            if await uow.plans.exists(plan_id, ctx.is_live, ctx.processor_id):
                return

        product = await self.classifier.check(
            await self.gateway.execute(
                GatewayOperation.CREATE_PRODUCT,
                {
                    "name": product_name(
                        membership_name=membership_name,
                        amount_minor=amount_minor,
                        currency=recurrence.currency,
                        interval_unit=recurrence.interval_unit,
                        interval_count=recurrence.interval_count,
                        is_live=ctx.is_live,
                    ),
                    "type": "service",
                },
            ),
            audit=audit,
        )
        created = await self.gateway.execute(
            GatewayOperation.CREATE_PLAN,
            {
                "id": plan_id,
                "amount": amount_minor,
                "currency": recurrence.currency,
                "interval": recurrence.interval_unit.value,
                "interval_count": recurrence.interval_count,
                "product": product["id"],
            },
        )
        await self.classifier.check(created, ignores=[PLAN_ALREADY_EXISTS], audit=audit)

        try:
            async with self.uow_factory() as uow:
                await uow.plans.add(PlanMapping(plan_id=plan_id, is_live=ctx.is_live, processor_id=ctx.processor_id))
        except MappingConflict:
            logger.info("plan_mapping_exists", plan_id=plan_id, processor_id=ctx.processor_id)
        else:
            logger.info("plan_mapping_created", plan_id=plan_id, processor_id=ctx.processor_id)
