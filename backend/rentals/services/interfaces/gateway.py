"""
Payment gateway interface.
Booking code talks to this, never to a concrete provider client.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


class GatewayError(RuntimeError):
    """Gateway unreachable or returned an unusable response (after retries)."""


@dataclass
class GatewayOrder:
    id: str
    amount_minor: int
    currency: str
    receipt: Optional[str] = None
    status: str = "created"
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"


class PaymentGateway(ABC):
    """
    Implementations:
    - RazorpayGateway: Razorpay Orders API over HTTPS
    - SandboxGateway: offline, for local runs and load tests
    """

    @abstractmethod
    async def create_order(self, amount_minor: int, currency: str, receipt: str) -> GatewayOrder:
        """
        Create a gateway order the client will pay against.

        Raises:
            GatewayError: gateway failed after the configured retries
        """
        pass

    @abstractmethod
    async def fetch_order(self, order_id: str) -> GatewayOrder:
        pass

    async def aclose(self):
        """Release network resources, if any."""
        pass
