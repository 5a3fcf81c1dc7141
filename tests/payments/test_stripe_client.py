import pytest

from application.ports.payment_gateway import GatewayErrorKind, GatewayOperation


stripe = pytest.importorskip("stripe")


@pytest.fixture
def client(monkeypatch, test_context):
    from infrastructure.external.payments import stripe_client

    monkeypatch.setattr(stripe_client, "_sdk_configured", True)
    return stripe_client.StripeGatewayClient(test_context)


def _card_error():
    return stripe.CardError(
        "Your card was declined.",
        "number",
        "card_declined",
        http_status=402,
        json_body={"error": {"type": "card_error", "code": "card_declined", "message": "Your card was declined."}},
    )


@pytest.mark.asyncio
async def test_every_call_carries_the_processor_key(monkeypatch, client):
    seen = {}

    def fake_create(**kwargs):
        seen.update(kwargs)
        return {"id": "cus_1"}

    monkeypatch.setattr(stripe.Customer, "create", fake_create)

    result = await client.execute(GatewayOperation.CREATE_CUSTOMER, {"email": "donor@example.org"})

    assert result.ok
    assert result.value == {"id": "cus_1"}
    assert seen == {"api_key": "sk_test_123", "email": "donor@example.org"}
    assert stripe.api_key != "sk_test_123"


@pytest.mark.asyncio
async def test_update_customer_splits_id(monkeypatch, client):
    seen = {}

    def fake_modify(customer_id, **kwargs):
        seen["id"] = customer_id
        seen.update(kwargs)
        return {"id": customer_id}

    monkeypatch.setattr(stripe.Customer, "modify", fake_modify)

    await client.execute(GatewayOperation.UPDATE_CUSTOMER, {"id": "cus_1", "balance": -2000})

    assert seen == {"id": "cus_1", "api_key": "sk_test_123", "balance": -2000}


@pytest.mark.asyncio
async def test_card_error_becomes_a_value(monkeypatch, client):
    def fake_charge(**kwargs):
        raise _card_error()

    monkeypatch.setattr(stripe.Charge, "create", fake_charge)

    result = await client.execute(GatewayOperation.CREATE_CHARGE, {"amount": 1000, "currency": "usd"})

    assert not result.ok
    error = result.error
    assert error.kind == GatewayErrorKind.API
    assert error.error_class == "CardError"
    assert error.type == "card_error"
    assert error.code == "card_declined"
    assert error.message == "Your card was declined."
    assert error.http_status == 402
    assert error.is_card_error


@pytest.mark.asyncio
async def test_connection_error_is_transport(monkeypatch, client):
    def fake_charge(**kwargs):
        raise stripe.APIConnectionError("Could not connect to Stripe")

    monkeypatch.setattr(stripe.Charge, "create", fake_charge)

    result = await client.execute(GatewayOperation.CREATE_CHARGE, {"amount": 1000, "currency": "usd"})

    assert result.error.kind == GatewayErrorKind.TRANSPORT
    assert result.error.is_transport


@pytest.mark.asyncio
async def test_deleted_customer_is_missing(monkeypatch, client):
    monkeypatch.setattr(stripe.Customer, "retrieve", lambda customer_id, **kwargs: {"id": customer_id, "deleted": True})

    result = await client.execute(GatewayOperation.RETRIEVE_CUSTOMER, "cus_gone")

    assert not result.ok
    assert result.error.error_class == "InvalidRequestError"
    assert result.error.code == "resource_missing"


@pytest.mark.asyncio
async def test_read_only_calls_retry_transport_failures(monkeypatch, client):
    attempts = []

    def flaky_retrieve(customer_id, **kwargs):
        attempts.append(customer_id)
        if len(attempts) < 3:
            raise stripe.APIConnectionError("timeout")
        return {"id": customer_id}

    monkeypatch.setattr(stripe.Customer, "retrieve", flaky_retrieve)
    client._retry_cfg = {"max": 2, "base": 0.01}

    result = await client.execute(GatewayOperation.RETRIEVE_CUSTOMER, "cus_1")

    assert result.ok
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_read_only_retry_gives_up_with_last_failure(monkeypatch, client):
    def down(customer_id, **kwargs):
        raise stripe.APIConnectionError("timeout")

    monkeypatch.setattr(stripe.Customer, "retrieve", down)
    client._retry_cfg = {"max": 1, "base": 0.01}

    result = await client.execute(GatewayOperation.RETRIEVE_CUSTOMER, "cus_1")

    assert result.error.is_transport


@pytest.mark.asyncio
async def test_mutating_calls_are_never_retried(monkeypatch, client):
    attempts = []

    def fake_charge(**kwargs):
        attempts.append(kwargs)
        raise stripe.APIConnectionError("timeout")

    monkeypatch.setattr(stripe.Charge, "create", fake_charge)
    client._retry_cfg = {"max": 3, "base": 0.01}

    result = await client.execute(GatewayOperation.CREATE_CHARGE, {"amount": 1000, "currency": "usd"})

    assert not result.ok
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_api_errors_on_reads_are_not_retried(monkeypatch, client):
    attempts = []

    def missing(customer_id, **kwargs):
        attempts.append(customer_id)
        raise stripe.InvalidRequestError("No such customer", "id", code="resource_missing")

    monkeypatch.setattr(stripe.Customer, "retrieve", missing)
    client._retry_cfg = {"max": 3, "base": 0.01}

    result = await client.execute(GatewayOperation.RETRIEVE_CUSTOMER, "cus_1")

    assert result.error.code == "resource_missing"
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retrieve_event_returns_plain_dict(monkeypatch, client):
    class _Event(dict):
        def to_dict(self):
            return dict(self)

    monkeypatch.setattr(stripe.Event, "retrieve", lambda event_id, **kwargs: _Event(id=event_id, type="invoice.paid"))

    result = await client.execute(GatewayOperation.RETRIEVE_EVENT, "evt_1")

    assert result.value == {"id": "evt_1", "type": "invoice.paid"}
    assert type(result.value) is dict


@pytest.mark.asyncio
async def test_programming_errors_propagate(monkeypatch, client):
    def broken(**kwargs):
        raise TypeError("unexpected keyword")

    monkeypatch.setattr(stripe.Charge, "create", broken)

    with pytest.raises(TypeError):
        await client.execute(GatewayOperation.CREATE_CHARGE, {"amount": 1})


def test_sdk_configuration_sets_app_info_without_credentials(monkeypatch):
    from infrastructure.external.payments import stripe_client

    calls = {}
    monkeypatch.setattr(stripe_client, "_sdk_configured", False)
    monkeypatch.setattr(stripe, "set_app_info", lambda name, **kwargs: calls.update(name=name, **kwargs))
    monkeypatch.setattr(stripe, "default_http_client", None)
    monkeypatch.setattr(stripe, "api_key", None)

    stripe_client.configure_stripe_sdk()

    assert calls["name"] == "CiviCRM"
    assert stripe.default_http_client is not None
    assert stripe.api_key is None
