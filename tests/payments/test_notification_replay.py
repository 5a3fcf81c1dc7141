import json

import pytest
from pydantic import ValidationError

from application.dtos.payments import ReplayRequest
from application.services.notification_replayer import EventIdSource, EventLogSource, NotificationReplayer
from application.services.notification_service import NotificationService
from domain.payment.entity import EventLogEntry
from domain.payment.exceptions import ReplayRejected, WebhookSignatureError
from shared.codes.payment_codes import PaymentCode

from tests.fakes import TEST_PROCESSOR_ID


def _invoice_event(event_id="evt_1", charge="ch_1"):
    return {
        "id": event_id,
        "type": "invoice.payment_succeeded",
        "data": {"object": {"object": "invoice", "id": "in_1", "charge": charge, "subscription": "sub_1"}},
    }


def _replayer(gateway, crm, uow_factory, payment_settings):
    return NotificationReplayer(
        ledger=crm,
        pipeline=crm,
        uow_factory=uow_factory,
        context_provider=payment_settings.account_context,
        gateway_factory=lambda _ctx: gateway,
    )


async def _log(uow_factory, payload, processor_id=TEST_PROCESSOR_ID):
    async with uow_factory() as uow:
        return await uow.event_log.add(
            EventLogEntry(processor_id=processor_id, payload=payload, event_id=payload.get("id"), event_type=payload.get("type"))
        )


@pytest.mark.asyncio
async def test_replaying_twice_processes_once(gateway, crm, uow_factory, payment_settings):
    entry = await _log(uow_factory, _invoice_event())
    replayer = _replayer(gateway, crm, uow_factory, payment_settings)

    first = await replayer.replay(EventLogSource(log_id=entry.id))
    second = await replayer.replay(EventLogSource(log_id=entry.id))

    assert first.status == "processed"
    assert first.trxn_id == "ch_1"
    assert second.status == "already_processed"
    assert len(crm.processed) == 1
    event, send_receipt = crm.processed[0]
    assert event.log_id == entry.id
    assert event.processor_id == TEST_PROCESSOR_ID
    assert send_receipt is True


@pytest.mark.asyncio
async def test_replay_by_event_id_fetches_from_gateway(gateway, crm, uow_factory, payment_settings):
    gateway.events["evt_9"] = _invoice_event("evt_9", "ch_9")

    outcome = await _replayer(gateway, crm, uow_factory, payment_settings).replay(
        EventIdSource(event_id="evt_9", processor_id=TEST_PROCESSOR_ID), send_receipt=False
    )

    assert outcome.status == "processed"
    assert outcome.event_id == "evt_9"
    assert crm.processed[0][1] is False


@pytest.mark.asyncio
async def test_settled_transaction_is_not_reprocessed(gateway, crm, uow_factory, payment_settings):
    crm.transactions.add("ch_1")
    entry = await _log(uow_factory, _invoice_event())

    outcome = await _replayer(gateway, crm, uow_factory, payment_settings).replay(EventLogSource(log_id=entry.id))

    assert outcome.status == "already_processed"
    assert crm.processed == []


@pytest.mark.asyncio
async def test_event_without_transaction_is_passed_through(gateway, crm, uow_factory, payment_settings):
    entry = await _log(uow_factory, {"id": "evt_2", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_1"}}})
    replayer = _replayer(gateway, crm, uow_factory, payment_settings)

    await replayer.replay(EventLogSource(log_id=entry.id))
    await replayer.replay(EventLogSource(log_id=entry.id))

    assert len(crm.processed) == 2


@pytest.mark.asyncio
async def test_unknown_log_entry_is_rejected(gateway, crm, uow_factory, payment_settings):
    with pytest.raises(ReplayRejected) as exc_info:
        await _replayer(gateway, crm, uow_factory, payment_settings).replay(EventLogSource(log_id=999))
    assert exc_info.value.message == "Failed to find that entry in the event log"


@pytest.mark.asyncio
async def test_log_entry_without_processor_is_rejected(gateway, crm, uow_factory, payment_settings):
    entry = await _log(uow_factory, _invoice_event(), processor_id=0)
    with pytest.raises(ReplayRejected):
        await _replayer(gateway, crm, uow_factory, payment_settings).replay(EventLogSource(log_id=entry.id))


@pytest.mark.asyncio
async def test_unknown_event_id_is_rejected(gateway, crm, uow_factory, payment_settings):
    with pytest.raises(ReplayRejected):
        await _replayer(gateway, crm, uow_factory, payment_settings).replay(
            EventIdSource(event_id="evt_missing", processor_id=TEST_PROCESSOR_ID)
        )
    assert crm.processed == []


def _service(gateway, crm, uow_factory, payment_settings):
    return NotificationService(
        settings=payment_settings,
        uow_factory=uow_factory,
        gateway_factory=lambda _ctx: gateway,
        ledger=crm,
        pipeline=crm,
    )


@pytest.mark.asyncio
async def test_webhook_is_logged_then_processed_once(gateway, crm, uow_factory, payment_settings):
    service = _service(gateway, crm, uow_factory, payment_settings)
    body = json.dumps(_invoice_event()).encode()

    first = await service.receive_webhook(TEST_PROCESSOR_ID, {"Stripe-Signature": "t=1,v1=x"}, body)
    second = await service.receive_webhook(TEST_PROCESSOR_ID, {"Stripe-Signature": "t=1,v1=x"}, body)

    assert first.status == "processed"
    assert second.status == "already_processed"
    assert first.log_id != second.log_id
    async with uow_factory() as uow:
        stored = await uow.event_log.get(first.log_id)
    assert stored.event_id == "evt_1"
    assert stored.payload["data"]["object"]["charge"] == "ch_1"


@pytest.mark.asyncio
async def test_bad_signature_is_a_failed_outcome(gateway, crm, uow_factory, payment_settings):
    def reject(_headers, _body):
        raise WebhookSignatureError("No signatures found matching the expected signature", processor_id=TEST_PROCESSOR_ID)

    gateway.construct_event = reject
    outcome = await _service(gateway, crm, uow_factory, payment_settings).receive_webhook(TEST_PROCESSOR_ID, {}, b"{}")

    assert outcome.status == "failed"
    assert outcome.error.code == PaymentCode.SIGNATURE_ERROR
    assert crm.processed == []


@pytest.mark.asyncio
async def test_webhook_for_unknown_processor_fails(gateway, crm, uow_factory, payment_settings):
    outcome = await _service(gateway, crm, uow_factory, payment_settings).receive_webhook(99, {}, b"{}")
    assert outcome.status == "failed"
    assert outcome.error.code == PaymentCode.PROCESSOR_NOT_CONFIGURED


@pytest.mark.asyncio
async def test_operator_replay_honours_no_receipt(gateway, crm, uow_factory, payment_settings):
    entry = await _log(uow_factory, _invoice_event())

    outcome = await _service(gateway, crm, uow_factory, payment_settings).replay(
        ReplayRequest.model_validate({"id": entry.id, "noreceipt": True})
    )

    assert outcome.status == "processed"
    assert crm.processed[0][1] is False


@pytest.mark.asyncio
async def test_operator_replay_of_missing_entry_fails(gateway, crm, uow_factory, payment_settings):
    outcome = await _service(gateway, crm, uow_factory, payment_settings).replay(ReplayRequest(log_id=999))

    assert outcome.status == "failed"
    assert outcome.log_id == 999
    assert outcome.error.code == PaymentCode.REPLAY_REJECTED


def test_replay_request_by_event_id_needs_processor():
    with pytest.raises(ValidationError):
        ReplayRequest.model_validate({"evtid": "evt_1"})
    assert ReplayRequest.model_validate({"evtid": "evt_1", "ppid": 3}).processor_id == 3
