"""
Notification entry points: signed webhook receipt and operator replay.

Every notification, live or replayed, passes the same ledger dedup gate in
NotificationReplayer.
"""
from __future__ import annotations

from typing import Any, Callable

from application.dtos.payments import PaymentErrorDetail, ReplayOutcome, ReplayRequest
from application.ports.crm import ContributionLedger, NotificationPipeline
from application.ports.payment_gateway import PaymentGateway
from application.services.notification_replayer import (
    EventIdSource,
    EventLogSource,
    NotificationReplayer,
)
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import EventLogEntry, GatewayAccountContext


logger = get_logger(__name__)


class NotificationService:
    def __init__(
        self,
        *,
        settings: PaymentSettings,
        uow_factory: Callable[[], AbstractUnitOfWork],
        gateway_factory: Callable[[GatewayAccountContext], PaymentGateway],
        ledger: ContributionLedger,
        pipeline: NotificationPipeline,
    ) -> None:
        self.settings = settings
        self.uow_factory = uow_factory
        self.gateway_factory = gateway_factory
        self.replayer = NotificationReplayer(
            ledger=ledger,
            pipeline=pipeline,
            uow_factory=uow_factory,
            context_provider=settings.account_context,
            gateway_factory=gateway_factory,
        )

    async def receive_webhook(self, processor_id: int, headers: dict[str, Any], body: bytes) -> ReplayOutcome:
        """Verify, log, then replay the event from the log."""
        try:
            gateway = self.gateway_factory(self.settings.account_context(processor_id))
            payload = gateway.construct_event(headers, body)
            async with self.uow_factory() as uow:
                entry = await uow.event_log.add(
                    EventLogEntry(
                        processor_id=processor_id,
                        payload=payload,
                        event_id=payload.get("id"),
                        event_type=payload.get("type"),
                    )
                )
            return await self.replayer.replay(EventLogSource(log_id=entry.id))
        except BusinessException as exc:
            logger.warning("webhook_rejected", processor_id=processor_id, error_type=exc.error_type, message=exc.message)
            return ReplayOutcome(status="failed", error=PaymentErrorDetail.from_exception(exc))

    async def replay(self, request: ReplayRequest) -> ReplayOutcome:
        if request.log_id is not None:
            source = EventLogSource(log_id=request.log_id)
        else:
            source = EventIdSource(event_id=request.event_id, processor_id=request.processor_id)
        try:
            return await self.replayer.replay(source, send_receipt=not request.no_receipt)
        except BusinessException as exc:
            logger.warning("ipn_replay_rejected", source=repr(source), error_type=exc.error_type, message=exc.message)
            return ReplayOutcome(
                status="failed",
                log_id=request.log_id,
                event_id=request.event_id,
                error=PaymentErrorDetail.from_exception(exc),
            )
