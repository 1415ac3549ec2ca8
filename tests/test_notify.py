import json

import httpx
import pytest

from paysettle.gateway import ReturnUrls
from paysettle.reconcile import HttpNotifier, Reconciled, ReconciliationEngine

URL = "https://mail.test/order-confirmation"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_order_id_with_bearer_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"sent": True})

    async with _client(handler) as client:
        await HttpNotifier(URL, token="svc_key", client=client).order_paid("O1")

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert str(seen[0].url) == URL
    assert json.loads(seen[0].content) == {"order_id": "O1"}
    assert seen[0].headers["authorization"] == "Bearer svc_key"


@pytest.mark.asyncio
async def test_no_token_sends_no_auth_header():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with _client(handler) as client:
        await HttpNotifier(URL, client=client).order_paid("O1")

    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_error_status_raises():
    async with _client(lambda request: httpx.Response(500)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpNotifier(URL, client=client).order_paid("O1")


@pytest.mark.asyncio
async def test_engine_keeps_payment_when_endpoint_fails(
    store, gateway, ledger, make_order
):
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["order_id"])
        return httpx.Response(503)

    async with _client(handler) as client:
        engine = ReconciliationEngine(
            store,
            gateway,
            ledger,
            ReturnUrls("https://shop.test"),
            notifier=HttpNotifier(URL, client=client),
        )
        store.put(make_order("O1", session_id=gateway.open("cs_initial")))
        gateway.complete("cs_initial")

        result = await engine.reconcile("O1", "cs_initial")
        await engine.drain()

    assert isinstance(result.value, Reconciled)
    assert calls == ["O1"]
    assert (await store.get_order("O1")).value.is_paid
