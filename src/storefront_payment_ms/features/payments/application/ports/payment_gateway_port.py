"""Payment gateway port (interface) - Adapter Pattern."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, TypeVar

from storefront_payment_ms.features.payments.domain.enums import GatewayChargeState
from storefront_payment_ms.shared.domain.exceptions import GatewayTimeoutError

T = TypeVar("T")


@dataclass
class ChargeRequest:
    """Request to capture a payment for an order."""

    amount: Decimal
    currency: str
    order_ref: str
    customer_id: str
    idempotency_key: str
    attempt: int = 1
    payment_method: str | None = None


@dataclass
class ChargeResult:
    """Result from an accepted charge."""

    gateway_charge_id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefundResult:
    """Result from an accepted refund."""

    gateway_refund_id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayChargeStatus:
    """Authoritative charge status reported by the gateway."""

    state: GatewayChargeState
    gateway_charge_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit."""
    return int((amount * 100).quantize(Decimal("1")))


async def with_timeout(provider: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a gateway call under a hard timeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise GatewayTimeoutError(provider, f"request timed out after {timeout}s") from e


class PaymentGatewayPort(ABC):
    """
    Abstract interface for payment gateways (Adapter Pattern).

    Implementations:
    - HttpGatewayAdapter (generic REST gateway)
    - StripePaymentAdapter
    - MockPaymentAdapter (for development and tests)

    Every call must raise GatewayTimeoutError when the hard timeout elapses
    and GatewayRejectedError when the gateway answers with a decline.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name, also used as the circuit breaker key."""
        pass

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """
        Capture a payment.

        The idempotency key is forwarded so the gateway itself deduplicates
        retried requests.
        """
        pass

    @abstractmethod
    async def refund(
        self, gateway_charge_id: str, amount: Decimal, reason: str | None = None
    ) -> GatewayRefundResult:
        """Refund (part of) a completed charge."""
        pass

    @abstractmethod
    async def get_charge_status(
        self, order_ref: str, gateway_charge_id: str | None = None
    ) -> GatewayChargeStatus:
        """
        Query the current status of the charge for an order.

        Looks the charge up by id when known, otherwise by order reference.
        """
        pass
