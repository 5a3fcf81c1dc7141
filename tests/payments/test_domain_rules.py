from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import ChargeRequest, IntervalUnit, NotificationEvent, RecurrenceSpec
from domain.payment.service import (
    add_interval,
    apply_discount,
    charge_description,
    compute_end_time,
    compute_plan_id,
    from_minor_units,
    product_name,
    select_contact_id,
    select_payer_email,
    to_minor_units,
)
from shared.codes.payment_codes import DISCOUNT_FIXED, DISCOUNT_GIFTCARD, DISCOUNT_PERCENTAGE


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("10.00"), 1000),
        ("10", 1000),
        (10.1, 1010),
        ("0.005", 1),
        ("1234.565", 123457),
        (0, 0),
    ],
)
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


def test_to_minor_units_rejects_negative():
    with pytest.raises(DomainValidationException):
        to_minor_units("-1.00")


def test_from_minor_units():
    assert from_minor_units(59) == Decimal("0.59")
    assert from_minor_units(941) == Decimal("9.41")


def test_plan_id_is_deterministic_and_mode_scoped():
    kwargs = dict(amount_minor=1000, currency="USD", interval_unit=IntervalUnit.MONTH, interval_count=1)
    assert compute_plan_id(is_live=True, **kwargs) == "every-1-month-1000-usd"
    assert compute_plan_id(is_live=False, **kwargs) == "every-1-month-1000-usd-test"
    assert compute_plan_id(is_live=False, **kwargs) == compute_plan_id(is_live=False, **kwargs)


def test_plan_id_with_membership_type():
    plan_id = compute_plan_id(
        amount_minor=5000,
        currency="eur",
        interval_unit="year",
        interval_count=2,
        is_live=True,
        membership_type_id=7,
    )
    assert plan_id == "membertype_7-every-2-year-5000-eur"


def test_product_name():
    name = product_name(
        membership_name="Gold",
        amount_minor=123456,
        currency="USD",
        interval_unit=IntervalUnit.MONTH,
        interval_count=1,
        is_live=False,
    )
    assert name == "CiviCRM Gold every 1 month(s) 1,234.56usd-test"


def test_add_interval_clamps_to_month_end():
    start = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_interval(start, IntervalUnit.MONTH, 1) == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)
    assert add_interval(start, IntervalUnit.YEAR, 1) == datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_interval(start, IntervalUnit.WEEK, 2) == datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)


def test_end_time_twelve_monthly_installments():
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)
    end = compute_end_time(now, interval_unit=IntervalUnit.MONTH, installments=12)
    assert end == int(datetime(2025, 3, 15, tzinfo=timezone.utc).timestamp())


def test_end_time_respects_interval_count():
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)
    end = compute_end_time(now, interval_unit=IntervalUnit.MONTH, interval_count=3, installments=4)
    assert end == int(datetime(2025, 3, 15, tzinfo=timezone.utc).timestamp())


@pytest.mark.parametrize("installments", [None, 0])
def test_end_time_open_ended(installments):
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert compute_end_time(now, interval_unit=IntervalUnit.DAY, installments=installments) is None


def test_percentage_discount_uses_listed_price():
    adjustment = apply_discount(8000, amount_type=DISCOUNT_PERCENTAGE, discount_amount="20", listed_amount="100.00")
    assert adjustment.plan_amount_minor == 10000
    assert adjustment.credit_minor == 2000


def test_percentage_discount_without_listed_price_is_noop():
    adjustment = apply_discount(8000, amount_type=DISCOUNT_PERCENTAGE, discount_amount="20")
    assert adjustment.plan_amount_minor == 8000
    assert adjustment.credit_minor == 0


@pytest.mark.parametrize("amount_type", [DISCOUNT_FIXED, DISCOUNT_GIFTCARD])
def test_fixed_and_giftcard_discount_add_back_amount(amount_type):
    adjustment = apply_discount(4000, amount_type=amount_type, discount_amount="10.00")
    assert adjustment.plan_amount_minor == 5000
    assert adjustment.credit_minor == 1000


def test_payer_email_priority():
    assert select_payer_email({"email": None, "email-5": "five@example.org", "email-Primary": "p@example.org"}) == "five@example.org"
    assert select_payer_email({"email-Primary": "p@example.org"}) == "p@example.org"
    assert select_payer_email({}) is None


def test_contact_id_selection():
    assert select_contact_id({"contact_id": None, "contactID": "42"}) == 42
    assert select_contact_id({}) is None


def test_charge_description():
    assert charge_description("Donation 1", "inv_9") == "CiviCRM # Donation 1 # Invoice ID: inv_9"
    assert charge_description(None, None) == "CiviCRM backend contribution # Invoice ID: "


def test_charge_request_validation():
    req = ChargeRequest(amount_minor=100, currency="USD", description="x")
    assert req.currency == "usd"
    assert ChargeRequest(amount_minor=0, currency="usd", description="x").is_zero
    with pytest.raises(DomainValidationException):
        ChargeRequest(amount_minor=-1, currency="usd", description="x")
    with pytest.raises(DomainValidationException):
        ChargeRequest(amount_minor=1, currency="us", description="x")


def test_recurrence_rejects_zero_interval():
    with pytest.raises(DomainValidationException):
        RecurrenceSpec(amount_minor=100, currency="usd", interval_unit=IntervalUnit.MONTH, interval_count=0)


def test_settlement_trxn_id_from_invoice_and_charge_events():
    invoice = NotificationEvent(
        event_id="evt_1",
        event_type="invoice.payment_succeeded",
        payload={"data": {"object": {"object": "invoice", "id": "in_1", "charge": "ch_9"}}},
        processor_id=3,
    )
    charge = NotificationEvent(
        event_id="evt_2",
        event_type="charge.succeeded",
        payload={"data": {"object": {"object": "charge", "id": "ch_7"}}},
        processor_id=3,
    )
    other = NotificationEvent(event_id="evt_3", event_type="customer.created", payload={}, processor_id=3)
    assert invoice.settlement_trxn_id == "ch_9"
    assert charge.settlement_trxn_id == "ch_7"
    assert other.settlement_trxn_id is None
