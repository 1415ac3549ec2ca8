import asyncio

import pytest
import stripe
from fastapi.testclient import TestClient

from paysettle.api import Services, build_services, create_app
from paysettle.orders import OrderStatus, PaymentStatus
from paysettle.reconcile import HttpNotifier, NullNotifier, notifier_from
from paysettle.retry import SUPPORT_MESSAGE
from paysettle.settings import Settings

from conftest import BASE_URL


@pytest.fixture
def services(store, ledger, gateway, notifier) -> Services:
    return Services(
        store=store,
        ledger=ledger,
        gateway=gateway,
        settings=Settings(
            public_base_url=BASE_URL,
            stripe_webhook_secret="whsec_test",
            retry_base_delay_seconds=0.0,
        ),
        notifier=notifier,
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def _completed_event(session_id: str, metadata: dict | None = None) -> dict:
    return {
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "metadata": metadata or {}}},
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Retry Endpoint
# ═══════════════════════════════════════════════════════════════════════════════


def test_retry_returns_checkout_url(client, store, make_order):
    store.put(make_order("O1"))

    response = client.post("/orders/O1/retry-payment", json={})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["retry_url"] == f"https://checkout.test/{body['session_id']}"
    assert body["message"] == "New checkout session created"
    assert body["attempts"] == 1


def test_retry_without_body(client, store, make_order):
    store.put(make_order("O1"))

    response = client.post("/orders/O1/retry-payment")

    assert response.status_code == 200
    assert response.json()["retry_url"]


def test_retry_with_completed_session_settles(client, store, gateway, make_order):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial")

    response = client.post("/orders/O1/retry-payment", json={"session_id": "cs_initial"})

    assert response.status_code == 200
    assert response.json()["message"] == "Payment found and order updated"
    assert response.json()["retry_url"] is None


def test_retry_unknown_order_is_404(client):
    response = client.post("/orders/ghost/retry-payment", json={})

    assert response.status_code == 404


def test_retry_hard_failure_is_400(client, store, gateway, make_order):
    store.put(make_order("O1"))
    gateway.fail_next_create(1, transient=False)

    response = client.post("/orders/O1/retry-payment", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["retry_failed"] is True
    assert body["message"] == SUPPORT_MESSAGE
    assert body["attempts"] == 1


def test_retry_attempts_listed(client, store, make_order):
    store.put(make_order("O1"))
    client.post("/orders/O1/retry-payment", json={})

    response = client.get("/orders/O1/retry-attempts")

    assert response.status_code == 200
    attempts = response.json()["attempts"]
    assert len(attempts) == 1
    assert attempts[0]["attempt_number"] == 1
    assert attempts[0]["success"] is False
    assert attempts[0]["reason"] == "user initiated retry"


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook
# ═══════════════════════════════════════════════════════════════════════════════


def test_webhook_marks_order_paid(services, store, gateway, notifier, make_order, mocker):
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial", intent_id="pi_hook")
    construct = mocker.patch(
        "stripe.Webhook.construct_event", return_value=_completed_event("cs_initial")
    )

    with TestClient(create_app(services)) as client:
        response = client.post(
            "/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=abc"}
        )

    assert response.status_code == 200
    assert response.json() == {"received": True, "order_id": "O1", "outcome": "Reconciled"}
    construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_test")

    order = asyncio.run(store.get_order("O1")).value
    assert order.status == OrderStatus.PROCESSING
    assert order.payment_status == PaymentStatus.PAID
    assert order.stripe_payment_intent_id == "pi_hook"
    # shutdown drains the confirmation task
    assert notifier.paid == ["O1"]


def test_webhook_uses_metadata_order_id(client, store, gateway, make_order, mocker):
    store.put(make_order("O1"))
    gateway.open("cs_retry", metadata={"order_id": "O1"})
    gateway.complete("cs_retry")
    mocker.patch(
        "stripe.Webhook.construct_event",
        return_value=_completed_event("cs_retry", {"order_id": "O1"}),
    )

    response = client.post("/webhooks/stripe", content=b"{}")

    assert response.json()["outcome"] == "Reconciled"


def test_webhook_bad_signature(client, mocker):
    mocker.patch(
        "stripe.Webhook.construct_event",
        side_effect=stripe.SignatureVerificationError("bad", "sig"),
    )

    response = client.post("/webhooks/stripe", content=b"{}")

    assert response.status_code == 400


def test_webhook_ignores_other_events(client, gateway, mocker):
    mocker.patch(
        "stripe.Webhook.construct_event",
        return_value={"type": "payment_intent.created", "data": {"object": {}}},
    )

    response = client.post("/webhooks/stripe", content=b"{}")

    assert response.status_code == 200
    assert response.json() == {"received": True, "order_id": None, "outcome": None}
    assert gateway.get_calls == 0


def test_webhook_lookup_failure_asks_for_redelivery(client, store, gateway, make_order, mocker):
    store.put(make_order("O1", session_id=gateway.open("cs_retry", metadata={"order_id": "O1"})))
    gateway.fail_next_get(1)
    mocker.patch(
        "stripe.Webhook.construct_event",
        return_value=_completed_event("cs_retry", {"order_id": "O1"}),
    )

    response = client.post("/webhooks/stripe", content=b"{}")

    assert response.status_code == 503
    assert gateway.create_calls == 0
    order = asyncio.run(store.get_order("O1")).value
    assert order.stripe_session_id == "cs_retry"
    assert not order.is_paid


def test_webhook_for_unfinished_session_never_issues(client, store, gateway, make_order, mocker):
    store.put(make_order("O1", session_id=gateway.open("cs_retry", metadata={"order_id": "O1"})))
    gateway.expire("cs_retry")
    mocker.patch(
        "stripe.Webhook.construct_event",
        return_value=_completed_event("cs_retry", {"order_id": "O1"}),
    )

    response = client.post("/webhooks/stripe", content=b"{}")

    assert response.status_code == 200
    assert response.json()["outcome"] == "SESSION_NOT_COMPLETE"
    assert gateway.create_calls == 0
    assert asyncio.run(store.get_order("O1")).value.stripe_session_id == "cs_retry"


# ═══════════════════════════════════════════════════════════════════════════════
# Wiring
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_build_services_posts_confirmations_when_configured():
    settings = Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        order_confirmation_url="https://mail.test/order-confirmation",
    )

    services = await build_services(settings)
    try:
        assert isinstance(services.notifier, HttpNotifier)
        assert services.notifier.url == "https://mail.test/order-confirmation"
    finally:
        await services.close()


@pytest.mark.asyncio
async def test_build_services_without_confirmation_url():
    services = await build_services(Settings(database_url="sqlite+aiosqlite:///:memory:"))
    try:
        assert isinstance(services.notifier, NullNotifier)
    finally:
        await services.close()


@pytest.mark.asyncio
async def test_close_waits_for_pending_confirmations(store, ledger, gateway, make_order):
    release = asyncio.Event()
    delivered: list[str] = []

    async def confirm(order_id: str) -> None:
        await release.wait()
        delivered.append(order_id)

    services = Services(
        store=store, ledger=ledger, gateway=gateway, notifier=notifier_from(confirm)
    )
    store.put(make_order("O1", session_id=gateway.open("cs_initial")))
    gateway.complete("cs_initial")
    await services.engine.reconcile("O1", "cs_initial")

    closing = asyncio.create_task(services.close())
    await asyncio.sleep(0)
    assert not closing.done()

    release.set()
    await closing
    assert delivered == ["O1"]
