import json

import httpx
import pytest

from donation_relay.core.errors import RelayNetworkError
from donation_relay.relay.client import FEE_LEG, RECIPIENT_LEG, HttpRelayClient
from tests.conftest import VAULT, make_request


def gateway(handler):
    transport = httpx.MockTransport(handler)
    return HttpRelayClient("http://relay", client=httpx.AsyncClient(base_url="http://relay", transport=transport))


async def test_get_balance():
    relay = gateway(lambda request: httpx.Response(200, json={"balance": 42_000_000}))
    assert await relay.get_balance() == 42_000_000
    await relay.aclose()


async def test_redeem_posts_the_redemption():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"signature": "5xSig"})

    relay = gateway(handler)
    item = make_request(amount=1000)

    assert await relay.redeem(RECIPIENT_LEG, item, 995, VAULT) == "5xSig"
    assert seen == [{
        "leg": "recipient",
        "commitment": item.commitment,
        "nullifier": item.nullifier,
        "secretHash": item.secret_hash,
        "amount": 995,
        "recipient": VAULT,
    }]


async def test_http_error_becomes_network_error():
    relay = gateway(lambda request: httpx.Response(503, json={"error": "busy"}))
    with pytest.raises(RelayNetworkError):
        await relay.redeem(FEE_LEG, make_request(), 5, None)


async def test_transport_error_becomes_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    relay = gateway(handler)
    with pytest.raises(RelayNetworkError):
        await relay.get_balance()


async def test_missing_signature_is_an_error():
    relay = gateway(lambda request: httpx.Response(200, json={"ok": True}))
    with pytest.raises(RelayNetworkError):
        await relay.redeem(FEE_LEG, make_request(), 5, None)


async def test_bad_balance_is_an_error():
    relay = gateway(lambda request: httpx.Response(200, json={"balance": "lots"}))
    with pytest.raises(RelayNetworkError):
        await relay.get_balance()
