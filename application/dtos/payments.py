"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.types import condecimal

from domain.common.exceptions import BusinessException
from domain.payment.entity import IntervalUnit
from domain.payment.exceptions import PaymentFatalError


def _upper_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


class PaymentRequest(BaseModel):
    """A one-off (or CRM-flagged recurring) payment as submitted by the CRM form."""

    model_config = ConfigDict(populate_by_name=True)

    processor_id: int
    amount: condecimal(ge=0)  # type: ignore[valid-type]
    currency: str = Field(default="USD", alias="currencyID")
    stripe_token: Optional[str] = None

    # Payer candidates, checked in order
    email: Optional[str] = None
    email_5: Optional[str] = Field(default=None, alias="email-5")
    email_primary: Optional[str] = Field(default=None, alias="email-Primary")
    contact_id: Optional[int] = None
    contact_id_legacy: Optional[int] = Field(default=None, alias="contactID")

    description: Optional[str] = None
    invoice_id: Optional[str] = Field(default=None, alias="invoiceID")
    contribution_id: Optional[int] = Field(default=None, alias="contributionID")
    contribution_page_id: Optional[int] = Field(default=None, alias="contributionPageID")
    select_membership: Optional[list[int]] = Field(default=None, alias="selectMembership")

    # Recurring fields
    is_recur: bool = False
    contribution_recur_id: Optional[int] = Field(default=None, alias="contributionRecurID")
    frequency_unit: Optional[IntervalUnit] = None
    frequency_interval: int = Field(default=1, ge=1)
    installments: Optional[int] = Field(default=None, ge=0)
    discount_code: Optional[str] = Field(default=None, alias="discountcode")
    price_field_id: Optional[int] = None
    price_field_value_id: Optional[int] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _upper_currency(v)

    @field_validator("frequency_interval", mode="before")
    @classmethod
    def _default_interval(cls, v: Any) -> Any:
        return 1 if v in (None, "", 0) else v

    def payer_fields(self) -> dict[str, Any]:
        """Candidate payer fields keyed by their CRM names."""
        return {
            "email": self.email,
            "email-5": self.email_5,
            "email-Primary": self.email_primary,
            "contact_id": self.contact_id,
            "contactID": self.contact_id_legacy,
        }

    @property
    def payer_contact_id(self) -> Optional[int]:
        return self.contact_id or self.contact_id_legacy

    @property
    def reuses_existing_card(self) -> bool:
        # Membership charge coming through a second time in the same flow:
        # the one-time token was already attached to the customer.
        return bool(self.select_membership) and not self.contribution_page_id

    @property
    def wants_recurring(self) -> bool:
        return self.is_recur and self.contribution_recur_id is not None


class RecurringPaymentRequest(PaymentRequest):
    is_recur: bool = True
    contribution_recur_id: int = Field(alias="contributionRecurID")
    frequency_unit: IntervalUnit


class PaymentErrorDetail(BaseModel):
    code: int
    message: str
    error_type: str
    fatal: bool = False
    gateway_code: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BusinessException) -> "PaymentErrorDetail":
        gateway_code = getattr(exc, "gateway_code", None)
        return cls(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            fatal=isinstance(exc, PaymentFatalError),
            gateway_code=str(gateway_code) if gateway_code is not None else None,
        )


class PaymentOutcome(BaseModel):
    status: Literal["succeeded", "skipped", "failed"]
    processor_id: int
    trxn_id: Optional[str] = None
    fee_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    error: Optional[PaymentErrorDetail] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class ReplayRequest(BaseModel):
    """Replay either a stored event log entry or a gateway event id."""

    model_config = ConfigDict(populate_by_name=True)

    log_id: Optional[int] = Field(default=None, alias="id")
    event_id: Optional[str] = Field(default=None, alias="evtid")
    processor_id: Optional[int] = Field(default=None, alias="ppid")
    no_receipt: bool = Field(default=False, alias="noreceipt")

    @model_validator(mode="after")
    def _check_source(self):
        if self.log_id is None and not self.event_id:
            raise ValueError("either a log id or an event id is required")
        if self.log_id is None and self.processor_id is None:
            raise ValueError("Please pass the payment processor id (ppid) if using evtid.")
        return self


class ReplayOutcome(BaseModel):
    status: Literal["processed", "already_processed", "failed"]
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    trxn_id: Optional[str] = None
    log_id: Optional[int] = None
    error: Optional[PaymentErrorDetail] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class ProcessorPublicConfig(BaseModel):
    processor_id: int
    mode: str
    publishable_key: Optional[str] = None
