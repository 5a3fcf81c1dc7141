import asyncio

import pytest
from sqlalchemy import select

from application.ports.crm import AuditContext
from application.ports.payment_gateway import GatewayOperation
from application.services.customer_reconciler import CustomerReconciler
from application.services.error_classifier import ErrorClassifier
from domain.payment.entity import CustomerMapping, PayerIdentity
from domain.payment.exceptions import GatewayReportableError, PaymentFatalError
from infrastructure.models import StripeCustomerModel

from tests.fakes import (
    TEST_PROCESSOR_ID,
    FakeGateway,
    InMemoryStore,
    InMemoryUnitOfWork,
    api_error,
    transport_error,
)


PAYER = PayerIdentity(email="donor@example.org", contact_id=12)


def _reconciler(gateway, uow_factory):
    return CustomerReconciler(gateway, uow_factory, ErrorClassifier())


async def _mapping(uow_factory, email=PAYER.email, is_live=False, processor_id=TEST_PROCESSOR_ID):
    async with uow_factory() as uow:
        return await uow.customers.get(email, is_live, processor_id), await uow.customers.count(email, is_live, processor_id)


@pytest.mark.asyncio
async def test_first_payment_creates_customer_and_mapping(gateway, uow_factory):
    resolved = await _reconciler(gateway, uow_factory).resolve(PAYER, "tok_visa")

    assert resolved.created
    assert resolved.customer_id == "cus_1"
    assert gateway.payloads(GatewayOperation.CREATE_CUSTOMER) == [
        {"description": "Donor from CiviCRM", "email": PAYER.email, "source": "tok_visa"}
    ]
    mapping, count = await _mapping(uow_factory)
    assert mapping.customer_id == "cus_1"
    assert count == 1


@pytest.mark.asyncio
async def test_known_payer_reuses_customer_and_attaches_card(gateway, uow_factory):
    reconciler = _reconciler(gateway, uow_factory)
    await reconciler.resolve(PAYER, "tok_first")
    resolved = await reconciler.resolve(PAYER, "tok_second")

    assert not resolved.created
    assert resolved.customer_id == "cus_1"
    assert gateway.count(GatewayOperation.CREATE_CUSTOMER) == 1
    assert gateway.payloads(GatewayOperation.UPDATE_CUSTOMER) == [{"id": "cus_1", "source": "tok_second"}]


@pytest.mark.asyncio
async def test_existing_card_is_not_reattached(gateway, uow_factory):
    reconciler = _reconciler(gateway, uow_factory)
    await reconciler.resolve(PAYER, "tok_first")
    await reconciler.resolve(PAYER, "tok_first", reuse_existing_card=True)

    assert gateway.count(GatewayOperation.UPDATE_CUSTOMER) == 0


@pytest.mark.asyncio
async def test_stale_mapping_is_replaced(gateway, uow_factory):
    async with uow_factory() as uow:
        await uow.customers.add(
            CustomerMapping(email=PAYER.email, customer_id="cus_deleted", is_live=False, processor_id=TEST_PROCESSOR_ID)
        )
    gateway.fail(
        GatewayOperation.RETRIEVE_CUSTOMER,
        api_error("No such customer: 'cus_deleted'", error_class="InvalidRequestError", type="invalid_request_error", code="resource_missing"),
    )

    resolved = await _reconciler(gateway, uow_factory).resolve(PAYER, "tok_visa")

    assert resolved.customer_id == "cus_1"
    mapping, count = await _mapping(uow_factory)
    assert mapping.customer_id == "cus_1"
    assert count == 1


@pytest.mark.asyncio
async def test_failed_repair_is_fatal(gateway, uow_factory):
    async with uow_factory() as uow:
        await uow.customers.add(
            CustomerMapping(email=PAYER.email, customer_id="cus_deleted", is_live=False, processor_id=TEST_PROCESSOR_ID)
        )
    gateway.fail(GatewayOperation.RETRIEVE_CUSTOMER, transport_error())
    gateway.fail(GatewayOperation.CREATE_CUSTOMER, transport_error())

    with pytest.raises(PaymentFatalError) as exc_info:
        await _reconciler(gateway, uow_factory).resolve(PAYER, "tok_visa")
    assert "Is Stripe down?" in exc_info.value.message

    mapping, _ = await _mapping(uow_factory)
    assert mapping.customer_id == "cus_deleted"


@pytest.mark.asyncio
async def test_declined_card_on_create_leaves_no_mapping(gateway, uow_factory):
    gateway.fail(GatewayOperation.CREATE_CUSTOMER, api_error())

    with pytest.raises(GatewayReportableError):
        await _reconciler(gateway, uow_factory).resolve(PAYER, "tok_declined")

    mapping, count = await _mapping(uow_factory)
    assert mapping is None
    assert count == 0


@pytest.mark.asyncio
async def test_live_and_test_mappings_are_separate(test_context, live_context, uow_factory):
    await _reconciler(FakeGateway(test_context), uow_factory).resolve(PAYER, "tok_visa")
    await _reconciler(FakeGateway(live_context), uow_factory).resolve(PAYER, "tok_visa")

    _, test_count = await _mapping(uow_factory, is_live=False, processor_id=test_context.processor_id)
    _, live_count = await _mapping(uow_factory, is_live=True, processor_id=live_context.processor_id)
    assert test_count == 1
    assert live_count == 1


@pytest.mark.asyncio
async def test_losing_the_insert_race_keeps_the_first_row(gateway, uow_factory, session_factory):
    async def create_while_competitor_commits(payload):
        # Another submission for the same payer commits between our read and our insert
        async with session_factory() as session:
            async with session.begin():
                session.add(
                    StripeCustomerModel(
                        email=payload["email"],
                        customer_id="cus_winner",
                        is_live=False,
                        processor_id=TEST_PROCESSOR_ID,
                    )
                )
        return {"id": "cus_loser"}

    gateway.on(GatewayOperation.CREATE_CUSTOMER, create_while_competitor_commits)

    resolved = await _reconciler(gateway, uow_factory).resolve(PAYER, "tok_visa")

    assert resolved.customer_id == "cus_loser"
    mapping, count = await _mapping(uow_factory)
    assert mapping.customer_id == "cus_winner"
    assert count == 1


@pytest.mark.asyncio
async def test_concurrent_first_payments_leave_one_mapping(gateway):
    store = InMemoryStore()
    reconciler = _reconciler(gateway, lambda: InMemoryUnitOfWork(store))

    results = await asyncio.gather(*(reconciler.resolve(PAYER, "tok_visa") for _ in range(5)))

    assert len(store.customers) == 1
    assert all(r.created for r in results)
    kept = store.customers[(PAYER.email, False, TEST_PROCESSOR_ID)]
    assert kept.customer_id in {r.customer_id for r in results}


async def _seed_stale(uow_factory, customer_id="cus_stale"):
    async with uow_factory() as uow:
        await uow.customers.add(
            CustomerMapping(email=PAYER.email, customer_id=customer_id, is_live=False, processor_id=TEST_PROCESSOR_ID)
        )


def _customer_vanished(gateway):
    gateway.fail(
        GatewayOperation.RETRIEVE_CUSTOMER,
        api_error("No such customer: 'cus_stale'", error_class="InvalidRequestError", type="invalid_request_error", code="resource_missing"),
    )


@pytest.mark.asyncio
async def test_losing_the_repair_race_keeps_the_competitors_row(gateway, uow_factory, session_factory):
    await _seed_stale(uow_factory)
    _customer_vanished(gateway)

    async def create_while_competitor_repairs(payload):
        # Another submission already replaced the stale row with its own customer
        async with session_factory() as session:
            async with session.begin():
                stale = (
                    await session.execute(select(StripeCustomerModel).where(StripeCustomerModel.customer_id == "cus_stale"))
                ).scalar_one()
                await session.delete(stale)
                await session.flush()
                session.add(
                    StripeCustomerModel(email=payload["email"], customer_id="cus_winner", is_live=False, processor_id=TEST_PROCESSOR_ID)
                )
        return {"id": "cus_loser"}

    gateway.on(GatewayOperation.CREATE_CUSTOMER, create_while_competitor_repairs)

    resolved = await _reconciler(gateway, uow_factory).resolve(PAYER, "tok_visa")

    assert resolved.customer_id == "cus_loser"
    mapping, count = await _mapping(uow_factory)
    assert mapping.customer_id == "cus_winner"
    assert count == 1


@pytest.mark.asyncio
async def test_concurrent_repairs_leave_one_fresh_mapping(test_context, uow_factory):
    await _seed_stale(uow_factory)
    created = iter(f"cus_new_{n}" for n in range(3))
    gateways = []
    for _ in range(3):
        gw = FakeGateway(test_context)
        _customer_vanished(gw)
        gw.on(GatewayOperation.CREATE_CUSTOMER, lambda _payload: {"id": next(created)})
        gateways.append(gw)

    results = [await _reconciler(gateways[0], uow_factory).resolve(PAYER, "tok_visa")]
    # 其余请求在首个修复提交前读到了同一条旧映射
    stale = CustomerMapping(email=PAYER.email, customer_id="cus_stale", is_live=False, processor_id=TEST_PROCESSOR_ID)
    for gw in gateways[1:]:
        results.append(await _reconciler(gw, uow_factory)._repair(PAYER, stale, "tok_visa", None))

    mapping, count = await _mapping(uow_factory)
    assert count == 1
    assert mapping.customer_id == "cus_new_0"
    assert [r.customer_id for r in results] == ["cus_new_0", "cus_new_1", "cus_new_2"]


@pytest.mark.asyncio
async def test_concurrent_repairs_in_memory_keep_first_winner(test_context):
    store = InMemoryStore()
    uow_factory = lambda: InMemoryUnitOfWork(store)  # noqa: E731
    await _seed_stale(uow_factory)
    counter = iter(range(100))

    gateway = FakeGateway(test_context)
    _customer_vanished(gateway)
    gateway.on(GatewayOperation.CREATE_CUSTOMER, lambda _payload: {"id": f"cus_new_{next(counter)}"})
    reconciler = _reconciler(gateway, uow_factory)

    results = await asyncio.gather(*(reconciler.resolve(PAYER, "tok_visa") for _ in range(4)))

    kept = store.customers[(PAYER.email, False, TEST_PROCESSOR_ID)]
    assert len(store.customers) == 1
    assert kept.customer_id != "cus_stale"
    assert kept.customer_id in {r.customer_id for r in results}


@pytest.mark.asyncio
async def test_declined_card_during_repair_records_audit_note(gateway, uow_factory, crm):
    await _seed_stale(uow_factory)
    _customer_vanished(gateway)
    gateway.fail(GatewayOperation.CREATE_CUSTOMER, api_error())
    audit = AuditContext(contact_id=12, contribution_id=34)

    reconciler = CustomerReconciler(gateway, uow_factory, ErrorClassifier(crm))
    with pytest.raises(PaymentFatalError):
        await reconciler.resolve(PAYER, "tok_declined", audit=audit)

    assert crm.notes == [{"audit": audit, "subject": "card_error", "note": "card_declined"}]
