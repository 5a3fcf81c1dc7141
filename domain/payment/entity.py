"""
支付领域实体 - Stripe 镜像记录与提交请求
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


class GatewayMode(str, Enum):
    """网关模式"""
    LIVE = "live"
    TEST = "test"


class IntervalUnit(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class GatewayAccountContext:
    """
    One payment processor's credentials in one mode.

    Built once per operation and passed explicitly; every mirror lookup is
    scoped by (processor_id, is_live).
    """

    processor_id: int
    mode: GatewayMode
    secret_key: str
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.mode == GatewayMode.LIVE

    @property
    def mode_tag(self) -> str:
        # Live and test plans share one id namespace at the gateway
        return "" if self.is_live else "-test"


@dataclass(frozen=True)
class PayerIdentity:
    email: str
    contact_id: Optional[int] = None

    def __post_init__(self):
        if not self.email:
            raise DomainValidationException("Payer email must not be empty", field="email")


@dataclass
class CustomerMapping:
    """
    本地客户镜像 - email 与 Stripe customer id 的对应关系

    业务规则：
    1. (email, is_live, processor_id) 唯一
    2. 身份字段不原地更新，失效时整行替换
    """

    email: str
    customer_id: str
    is_live: bool
    processor_id: int
    id: Optional[int] = None


@dataclass
class PlanMapping:
    plan_id: str
    is_live: bool
    processor_id: int
    id: Optional[int] = None


@dataclass
class SubscriptionMapping:
    subscription_id: str
    customer_id: str
    contribution_recur_id: Optional[int]
    processor_id: int
    is_live: bool
    end_time: Optional[int] = None  # epoch seconds, None for open-ended series
    id: Optional[int] = None


@dataclass
class ChargeRequest:
    """A single charge in minor units. Zero is a legitimate pass-through."""

    amount_minor: int
    currency: str
    description: str
    customer_id: Optional[str] = None
    card_token: Optional[str] = None

    def __post_init__(self):
        if self.amount_minor < 0:
            raise DomainValidationException(
                f"Charge amount must not be negative: {self.amount_minor}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"Invalid currency code: {self.currency}", field="currency")
        self.currency = self.currency.lower()

    @property
    def is_zero(self) -> bool:
        return self.amount_minor == 0


@dataclass
class ChargeResult:
    trxn_id: str
    fee_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None


@dataclass
class ResolvedCustomer:
    """Gateway customer verified to exist for this submission."""

    customer_id: str
    customer: Any = None
    created: bool = False


@dataclass
class RecurrenceSpec:
    amount_minor: int
    currency: str
    interval_unit: IntervalUnit
    interval_count: int = 1
    installments: Optional[int] = None
    contribution_recur_id: Optional[int] = None
    membership_type_id: Optional[int] = None
    discount_code: Optional[str] = None
    price_field_id: Optional[int] = None
    price_field_value_id: Optional[int] = None

    def __post_init__(self):
        if self.interval_count < 1:
            raise DomainValidationException(
                f"Interval count must be at least 1: {self.interval_count}",
                field="frequency_interval",
            )
        if self.installments is not None and self.installments < 0:
            raise DomainValidationException(
                f"Installments must not be negative: {self.installments}",
                field="installments",
            )
        self.currency = self.currency.lower()


@dataclass
class SubscriptionResult:
    # No transaction id on purpose: the series is completed by notification replay.
    subscription_id: str
    plan_id: str
    end_time: Optional[int] = None


@dataclass
class NotificationEvent:
    """A gateway event ready for the dedup gate."""

    event_id: Optional[str]
    event_type: Optional[str]
    payload: dict
    processor_id: int
    log_id: Optional[int] = None

    @property
    def data_object(self) -> dict:
        return ((self.payload or {}).get("data") or {}).get("object") or {}

    @property
    def settlement_trxn_id(self) -> Optional[str]:
        obj = self.data_object
        charge = obj.get("charge")
        if isinstance(charge, dict):
            charge = charge.get("id")
        if charge:
            return str(charge)
        if obj.get("object") == "charge" and obj.get("id"):
            return str(obj["id"])
        return None


@dataclass
class EventLogEntry:
    processor_id: int
    payload: dict
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_event(self) -> NotificationEvent:
        return NotificationEvent(
            event_id=self.event_id,
            event_type=self.event_type,
            payload=self.payload,
            processor_id=self.processor_id,
            log_id=self.id,
        )
