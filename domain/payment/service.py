"""
支付领域服务 - 纯业务规则（金额换算、计划标识、折扣、周期结束时间）

Everything here is a pure function of its inputs so the engine can be tested
without a gateway or a database.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import IntervalUnit
from shared.codes.payment_codes import DISCOUNT_PERCENTAGE


# Candidate request fields, in priority order
EMAIL_FIELDS = ("email", "email-5", "email-Primary")
CONTACT_ID_FIELDS = ("contact_id", "contactID")

CUSTOMER_DESCRIPTION = "Donor from CiviCRM"
BACKEND_CONTRIBUTION_DESCRIPTION = "CiviCRM backend contribution"

_NON_DIGITS = re.compile(r"[^\d]")
_CENT = Decimal("0.01")


def to_minor_units(amount: Any) -> int:
    """
    Convert a decimal currency amount to integer minor units.

    Fixed two-decimal formatting with half-up rounding, then the separator is
    stripped. Float inputs go through ``str`` first so 10.1 stays 10.10.
    """
    value = Decimal(str(amount))
    if value < 0:
        raise DomainValidationException(f"Amount must not be negative: {amount}", field="amount")
    formatted = format(value.quantize(_CENT, rounding=ROUND_HALF_UP), "f")
    return int(_NON_DIGITS.sub("", formatted))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / 100).quantize(_CENT)


def compute_plan_id(
    *,
    amount_minor: int,
    currency: str,
    interval_unit: IntervalUnit | str,
    interval_count: int,
    is_live: bool,
    membership_type_id: Optional[int] = None,
) -> str:
    """Deterministic plan identity; test plans get a ``-test`` suffix."""
    unit = IntervalUnit(interval_unit).value
    membership_tag = f"membertype_{membership_type_id}-" if membership_type_id else ""
    mode_tag = "" if is_live else "-test"
    return f"{membership_tag}every-{interval_count}-{unit}-{amount_minor}-{currency.lower()}{mode_tag}"


def product_name(
    *,
    membership_name: str,
    amount_minor: int,
    currency: str,
    interval_unit: IntervalUnit | str,
    interval_count: int,
    is_live: bool,
) -> str:
    unit = IntervalUnit(interval_unit).value
    mode_tag = "" if is_live else "-test"
    formatted = f"{from_minor_units(amount_minor):,.2f}"
    return f"CiviCRM {membership_name} every {interval_count} {unit}(s) {formatted}{currency.lower()}{mode_tag}"


def add_interval(start: datetime, unit: IntervalUnit | str, count: int) -> datetime:
    """Calendar arithmetic; month/year steps clamp to the last day of the month."""
    unit = IntervalUnit(unit)
    if unit == IntervalUnit.DAY:
        return start + timedelta(days=count)
    if unit == IntervalUnit.WEEK:
        return start + timedelta(weeks=count)
    months = count * 12 if unit == IntervalUnit.YEAR else count
    index = start.month - 1 + months
    year = start.year + index // 12
    month = index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_end_time(
    now: datetime,
    *,
    interval_unit: IntervalUnit | str,
    interval_count: int = 1,
    installments: Optional[int] = None,
) -> Optional[int]:
    """Epoch seconds of the last installment, or None for an open-ended series."""
    if not installments:
        return None
    return int(add_interval(now, interval_unit, installments * interval_count).timestamp())


@dataclass(frozen=True)
class DiscountAdjustment:
    """Recurring amount at full price plus a one-time credit for the first invoice."""

    plan_amount_minor: int
    credit_minor: int = 0


def apply_discount(
    charged_minor: int,
    *,
    amount_type: int,
    discount_amount: Any,
    listed_amount: Any = None,
) -> DiscountAdjustment:
    """
    Percentage discounts use the listed (undiscounted) price; the delta becomes
    the credit. Fixed and giftcard discounts add the stated amount back on top
    of the charged amount, which may exceed the first invoice.
    """
    if int(amount_type) == DISCOUNT_PERCENTAGE:
        if listed_amount is None:
            return DiscountAdjustment(plan_amount_minor=charged_minor)
        full_price = to_minor_units(listed_amount)
        if full_price <= charged_minor:
            return DiscountAdjustment(plan_amount_minor=charged_minor)
        return DiscountAdjustment(plan_amount_minor=full_price, credit_minor=full_price - charged_minor)
    credit = to_minor_units(discount_amount)
    return DiscountAdjustment(plan_amount_minor=charged_minor + credit, credit_minor=credit)


def select_payer_email(params: Mapping[str, Any]) -> Optional[str]:
    for name in EMAIL_FIELDS:
        value = params.get(name)
        if value:
            return str(value)
    return None


def select_contact_id(params: Mapping[str, Any]) -> Optional[int]:
    for name in CONTACT_ID_FIELDS:
        value = params.get(name)
        if value:
            return int(value)
    return None


def charge_description(description: Optional[str], invoice_id: Optional[str]) -> str:
    if description:
        text = f"CiviCRM # {description}"
    else:
        text = BACKEND_CONTRIBUTION_DESCRIPTION
    return f"{text} # Invoice ID: {invoice_id or ''}"
