"""
Tests for the Razorpay client: signatures, retries and error mapping.
"""

import httpx
import pytest

from rentals.infrastructure.razorpay_client import (
    RazorpayGateway,
    SandboxGateway,
    payment_signature,
    signatures_match,
)
from rentals.services.interfaces.gateway import GatewayError

ORDER = {"id": "order_Q1", "amount": 17000, "currency": "INR", "receipt": "rcpt_BK-ABC", "status": "created"}


def _gateway(handler, max_retries: int = 1) -> RazorpayGateway:
    http = httpx.AsyncClient(
        base_url="https://api.razorpay.test/v1",
        auth=("rzp_test_key", "secret"),
        transport=httpx.MockTransport(handler),
    )
    return RazorpayGateway("rzp_test_key", "secret", max_retries=max_retries, http=http)


def test_payment_signature_matches_checkout_format():
    signature = payment_signature("secret", "order_Q1", "pay_P1")
    assert len(signature) == 64
    assert signatures_match(signature, signature)
    assert not signatures_match(signature, payment_signature("secret", "order_Q1", "pay_P2"))
    assert not signatures_match(signature, None)


@pytest.mark.asyncio
async def test_create_order():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=ORDER)

    gateway = _gateway(handler)
    order = await gateway.create_order(17000, "INR", receipt="rcpt_BK-ABC")
    await gateway.aclose()

    assert order.id == "order_Q1"
    assert order.amount_minor == 17000
    assert not order.is_paid
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/v1/orders"
    assert seen[0].headers["authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_server_error_is_retried_once():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json={**ORDER, "status": "paid"})

    gateway = _gateway(handler)
    order = await gateway.fetch_order("order_Q1")
    assert len(calls) == 2
    assert order.is_paid


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": {"description": "amount too small"}})

    gateway = _gateway(handler)
    with pytest.raises(GatewayError, match="gateway_error_400"):
        await gateway.create_order(50, "INR", receipt="rcpt_BK-ABC")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_repeated_timeouts_raise_gateway_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = _gateway(handler)
    with pytest.raises(GatewayError, match="gateway_timeout"):
        await gateway.create_order(17000, "INR", receipt="rcpt_BK-ABC")
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_malformed_response_raises_gateway_error():
    gateway = _gateway(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(GatewayError, match="gateway_bad_response"):
        await gateway.fetch_order("order_Q1")


@pytest.mark.asyncio
async def test_sandbox_gateway():
    gateway = SandboxGateway()
    order = await gateway.create_order(20000, "INR", receipt="rcpt_BK-XYZ")
    assert order.id.startswith("order_sandbox_")
    assert not (await gateway.fetch_order(order.id)).is_paid

    gateway.mark_paid(order.id)
    assert (await gateway.fetch_order(order.id)).is_paid

    with pytest.raises(GatewayError):
        await gateway.fetch_order("order_unknown")
