"""
Notification replay with a ledger-based dedup gate.

An event is sourced either from the local event log (payload trusted, it was
signature-checked on receipt) or re-fetched from the gateway by id. Either
way the settlement transaction id decides whether the pipeline runs.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from application.dtos.payments import ReplayOutcome
from application.ports.crm import ContributionLedger, NotificationPipeline
from application.ports.payment_gateway import GatewayOperation, PaymentGateway
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import GatewayAccountContext, NotificationEvent
from domain.payment.exceptions import ReplayRejected


logger = get_logger(__name__)


@dataclass(frozen=True)
class EventIdSource:
    event_id: str
    processor_id: int


@dataclass(frozen=True)
class EventLogSource:
    log_id: int


ReplaySource = Union[EventIdSource, EventLogSource]


class NotificationReplayer:
    def __init__(
        self,
        *,
        ledger: ContributionLedger,
        pipeline: NotificationPipeline,
        uow_factory: Callable[[], AbstractUnitOfWork],
        context_provider: Callable[[int], GatewayAccountContext],
        gateway_factory: Callable[[GatewayAccountContext], PaymentGateway],
    ) -> None:
        self.ledger = ledger
        self.pipeline = pipeline
        self.uow_factory = uow_factory
        self.context_provider = context_provider
        self.gateway_factory = gateway_factory

    async def replay(self, source: ReplaySource, *, send_receipt: bool = True) -> ReplayOutcome:
        event = await self._load(source)
        trxn_id = event.settlement_trxn_id

        if trxn_id and await self.ledger.has_transaction(trxn_id):
            logger.info(
                "ipn_already_processed",
                event_id=event.event_id,
                trxn_id=trxn_id,
                processor_id=event.processor_id,
            )
            return ReplayOutcome(
                status="already_processed",
                event_id=event.event_id,
                event_type=event.event_type,
                trxn_id=trxn_id,
                log_id=event.log_id,
            )

        await self.pipeline.process(event, send_receipt=send_receipt)
        logger.info(
            "ipn_processed",
            event_id=event.event_id,
            event_type=event.event_type,
            trxn_id=trxn_id,
            processor_id=event.processor_id,
            send_receipt=send_receipt,
        )
        return ReplayOutcome(
            status="processed",
            event_id=event.event_id,
            event_type=event.event_type,
            trxn_id=trxn_id,
            log_id=event.log_id,
        )

    async def _load(self, source: ReplaySource) -> NotificationEvent:
        if isinstance(source, EventLogSource):
            async with self.uow_factory() as uow:
                entry = await uow.event_log.get(source.log_id)
            if entry is None:
                raise ReplayRejected("Failed to find that entry in the event log", details={"log_id": source.log_id})
            if not entry.processor_id:
                raise ReplayRejected("Failed to find payment processor id in the event log", details={"log_id": source.log_id})
            return entry.to_event()

        gateway = self.gateway_factory(self.context_provider(source.processor_id))
        result = await gateway.execute(GatewayOperation.RETRIEVE_EVENT, source.event_id)
        if not result.ok:
            logger.warning(
                "event_retrieve_failed",
                event_id=source.event_id,
                processor_id=source.processor_id,
                error_class=result.error.error_class,
                message=result.error.message,
            )
            raise ReplayRejected(
                f"Unable to retrieve event {source.event_id} from Stripe: {result.error.message or result.error.error_class}",
                details={"event_id": source.event_id, "processor_id": source.processor_id},
            )
        payload = result.value
        return NotificationEvent(
            event_id=payload.get("id") or source.event_id,
            event_type=payload.get("type"),
            payload=payload,
            processor_id=source.processor_id,
        )
