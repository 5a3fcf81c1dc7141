"""
CRM collaborator ports.

The engine reads payer, discount and price data from the CRM and hands
validated notification events to the CRM's processing pipeline. These
Protocols keep the application layer independent of how the CRM is reached.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from domain.payment.entity import NotificationEvent


@dataclass(frozen=True)
class DiscountCode:
    code: str
    amount: Decimal
    amount_type: int  # 1 percentage, 2 fixed, 3 giftcard


@dataclass(frozen=True)
class AuditContext:
    """Where a decline note gets attached."""

    contact_id: Optional[int] = None
    contribution_id: Optional[int] = None


@runtime_checkable
class ContactDirectory(Protocol):
    async def get_email(self, contact_id: int) -> Optional[str]: ...


@runtime_checkable
class DiscountCodeLookup(Protocol):
    async def get_discount(self, code: str) -> Optional[DiscountCode]: ...


@runtime_checkable
class PriceFieldLookup(Protocol):
    async def get_listed_amount(self, price_field_value_id: int, price_field_id: Optional[int] = None) -> Optional[Decimal]: ...


@runtime_checkable
class MembershipTypeLookup(Protocol):
    async def get_name(self, membership_type_id: int) -> Optional[str]: ...


@runtime_checkable
class AuditNotes(Protocol):
    async def record_card_decline(self, audit: AuditContext, *, subject: str, note: str) -> None: ...


@runtime_checkable
class ContributionLedger(Protocol):
    async def has_transaction(self, trxn_id: str) -> bool: ...


@runtime_checkable
class NotificationPipeline(Protocol):
    async def process(self, event: NotificationEvent, *, send_receipt: bool = True) -> None: ...
