"""
CiviCRM REST (APIv3) client implementing the CRM collaborator ports.

Reads go out as GET and may be retried; Note.create and IPN delivery are
POSTs and are sent once.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Optional

from application.ports.crm import AuditContext, DiscountCode
from core.logging_config import get_logger
from core.settings import CiviCRMSettings
from domain.payment.entity import NotificationEvent
from domain.payment.exceptions import CRMRequestFailed

from .base import BaseAPIClient, APIError


logger = get_logger(__name__)


class CiviCRMError(CRMRequestFailed):
    """CiviCRM 返回 is_error=1"""


class CiviCRMClient(BaseAPIClient):
    """One client serves every CRM port: contacts, discounts, price fields,
    membership types, notes, the contribution ledger and the IPN pipeline."""

    def __init__(self, config: CiviCRMSettings, **kwargs):
        super().__init__(
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            **kwargs,
        )
        self.config = config

    def _auth(self) -> dict[str, str]:
        auth = {}
        if self.config.api_key:
            auth["api_key"] = self.config.api_key
        if self.config.site_key:
            auth["key"] = self.config.site_key
        return auth

    async def call(self, entity: str, action: str, params: Optional[dict[str, Any]] = None, *, write: bool = False) -> Any:
        query = {
            "entity": entity,
            "action": action,
            "json": json.dumps({"sequential": 1, **(params or {})}),
            **self._auth(),
        }
        operation = f"{entity}.{action}"
        try:
            if write:
                response = await self.post(self.config.rest_path, data=query)
            else:
                response = await self.get(self.config.rest_path, params=query)
        except APIError as exc:
            logger.error("civicrm_request_failed", operation=operation, status_code=exc.status_code, error=exc.message)
            raise CRMRequestFailed(f"{operation}: {exc.message}", status_code=exc.status_code, operation=operation) from exc
        try:
            result = response.json()
        except ValueError as exc:
            raise CRMRequestFailed(f"{operation}: response is not JSON", status_code=response.status_code, operation=operation) from exc
        if isinstance(result, dict) and result.get("is_error"):
            raise CiviCRMError(f"{operation}: {result.get('error_message', 'unknown error')}", operation=operation)
        return result

    @staticmethod
    def _first(result: Any) -> Optional[dict[str, Any]]:
        values = (result or {}).get("values") or []
        if isinstance(values, dict):
            values = list(values.values())
        return values[0] if values else None

    # ContactDirectory
    async def get_email(self, contact_id: int) -> Optional[str]:
        result = await self.call("Contact", "getvalue", {"id": contact_id, "return": "email"})
        if isinstance(result, dict):
            result = result.get("result")
        return result or None

    # DiscountCodeLookup
    async def get_discount(self, code: str) -> Optional[DiscountCode]:
        row = self._first(await self.call("DiscountCode", "get", {"code": code, "return": "amount,amount_type"}))
        if not row or not row.get("amount") or not row.get("amount_type"):
            return None
        return DiscountCode(code=code, amount=Decimal(str(row["amount"])), amount_type=int(row["amount_type"]))

    # PriceFieldLookup
    async def get_listed_amount(self, price_field_value_id: int, price_field_id: Optional[int] = None) -> Optional[Decimal]:
        params: dict[str, Any] = {"id": price_field_value_id, "return": "amount"}
        if price_field_id is not None:
            params["price_field_id"] = price_field_id
        row = self._first(await self.call("PriceFieldValue", "get", params))
        if not row or not row.get("amount"):
            return None
        return Decimal(str(row["amount"]))

    # MembershipTypeLookup
    async def get_name(self, membership_type_id: int) -> Optional[str]:
        row = self._first(await self.call("MembershipType", "get", {"id": membership_type_id, "return": "name"}))
        return row.get("name") if row else None

    # AuditNotes
    async def record_card_decline(self, audit: AuditContext, *, subject: str, note: str) -> None:
        await self.call(
            "Note",
            "create",
            {
                "entity_table": "civicrm_contribution",
                "entity_id": audit.contribution_id,
                "contact_id": audit.contact_id,
                "subject": subject,
                "note": note,
            },
            write=True,
        )

    # ContributionLedger
    async def has_transaction(self, trxn_id: str) -> bool:
        result = await self.call("Contribution", "getcount", {"trxn_id": trxn_id})
        if isinstance(result, dict):
            result = result.get("result", 0)
        return int(result or 0) > 0

    # NotificationPipeline
    async def process(self, event: NotificationEvent, *, send_receipt: bool = True) -> None:
        params = {"processor_id": event.processor_id}
        if not send_receipt:
            params["noreceipt"] = 1
        try:
            await self._request(
                "POST",
                f"{self.config.ipn_path.rstrip('/')}/{event.processor_id}",
                params=params,
                json_data=event.payload,
            )
        except APIError as exc:
            logger.error("ipn_dispatch_failed", event_id=event.event_id, status_code=exc.status_code, error=exc.message)
            raise CRMRequestFailed(f"IPN dispatch failed: {exc.message}", status_code=exc.status_code, operation="ipn") from exc
        logger.info(
            "ipn_dispatched",
            event_id=event.event_id,
            event_type=event.event_type,
            processor_id=event.processor_id,
            send_receipt=send_receipt,
        )
