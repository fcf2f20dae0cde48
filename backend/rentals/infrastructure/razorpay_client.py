"""
Razorpay Orders API client and offline sandbox gateway.

Only the two calls the booking core needs are implemented:
    POST /orders          create an order (amount in paise)
    GET  /orders/{id}     fetch an order (webhook cross-check)

Network failures, timeouts and 5xx responses are retried
`GATEWAY_MAX_RETRIES` times (default once); 4xx responses are not retried.
"""

import hashlib
import hmac
import secrets
from typing import Any, Optional

import httpx

from rentals.core.logging import get_logger
from rentals.core.metrics import record_gateway_request
from rentals.services.interfaces.gateway import GatewayError, GatewayOrder, PaymentGateway

logger = get_logger(__name__)


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    """hex(HMAC-SHA256(secret, "<order_id>|<payment_id>")), as the checkout widget signs it."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def webhook_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signatures_match(expected: str, supplied: Optional[str]) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def _order_from_payload(data: dict[str, Any]) -> GatewayOrder:
    try:
        return GatewayOrder(
            id=data["id"],
            amount_minor=int(data["amount"]),
            currency=data.get("currency", "INR"),
            receipt=data.get("receipt"),
            status=data.get("status", "created"),
            raw=data,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise GatewayError(f"gateway_bad_response: {exc}") from exc


class RazorpayGateway(PaymentGateway):
    """Razorpay over HTTPS with basic auth (key id / key secret)."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout_seconds: float = 10.0,
        max_retries: int = 1,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.max_retries = max_retries
        self.http = http or httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
        )

    async def aclose(self):
        await self.http.aclose()

    async def _call(self, operation: str, method: str, path: str, **kwargs) -> dict:
        attempts = self.max_retries + 1
        last_error: Optional[str] = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self.http.request(method, path, **kwargs)
            except httpx.TimeoutException as exc:
                last_error = f"gateway_timeout: {path} timed out"
                logger.warning("gateway_request_timeout", operation=operation, attempt=attempt, error=str(exc))
            except httpx.HTTPError as exc:
                last_error = f"gateway_connection_failed: {exc}"
                logger.warning("gateway_request_failed", operation=operation, attempt=attempt, error=str(exc))
            else:
                if response.status_code < 400:
                    record_gateway_request(operation, "ok")
                    return response.json()
                if response.status_code < 500:
                    record_gateway_request(operation, "error")
                    logger.error(
                        "gateway_request_rejected",
                        operation=operation,
                        status_code=response.status_code,
                        body=response.text[:500],
                    )
                    raise GatewayError(f"gateway_error_{response.status_code}")
                last_error = f"gateway_error_{response.status_code}"
                logger.warning(
                    "gateway_server_error",
                    operation=operation,
                    attempt=attempt,
                    status_code=response.status_code,
                )
            if attempt < attempts:
                record_gateway_request(operation, "retry")

        record_gateway_request(operation, "error")
        raise GatewayError(last_error or "gateway_unavailable")

    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> GatewayOrder:
        data = await self._call(
            "create_order",
            "POST",
            "/orders",
            json={"amount": amount_minor, "currency": currency, "receipt": receipt},
        )
        order = _order_from_payload(data)
        logger.info("gateway_order_created", order_id=order.id, amount_minor=amount_minor, receipt=receipt)
        return order

    async def fetch_order(self, order_id: str) -> GatewayOrder:
        data = await self._call("fetch_order", "GET", f"/orders/{order_id}")
        return _order_from_payload(data)


class SandboxGateway(PaymentGateway):
    """
    In-memory gateway for local development and load tests.
    Orders are never paid unless `mark_paid` is called.
    """

    def __init__(self):
        self.orders: dict[str, GatewayOrder] = {}

    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> GatewayOrder:
        order = GatewayOrder(
            id=f"order_sandbox_{secrets.token_hex(7)}",
            amount_minor=amount_minor,
            currency=currency,
            receipt=receipt,
        )
        self.orders[order.id] = order
        record_gateway_request("create_order", "ok")
        return order

    async def fetch_order(self, order_id: str) -> GatewayOrder:
        order = self.orders.get(order_id)
        if order is None:
            raise GatewayError(f"gateway_error_404: unknown order {order_id}")
        return order

    def mark_paid(self, order_id: str):
        self.orders[order_id].status = "paid"
