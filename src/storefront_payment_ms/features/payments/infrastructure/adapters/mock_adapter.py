"""Mock Payment Gateway Adapter - For development and testing."""

import asyncio
import secrets
from collections import deque
from decimal import Decimal
from typing import Any, Literal

from storefront_payment_ms.features.payments.application.ports import (
    ChargeRequest,
    ChargeResult,
    GatewayChargeStatus,
    GatewayRefundResult,
    PaymentGatewayPort,
    to_minor_units,
    with_timeout,
)
from storefront_payment_ms.features.payments.domain.enums import GatewayChargeState
from storefront_payment_ms.shared.core.settings import get_settings
from storefront_payment_ms.shared.domain.exceptions import (
    GatewayRejectedError,
    GatewayTimeoutError,
)

Outcome = Literal["success", "pending", "reject", "timeout"]


class MockPaymentAdapter(PaymentGatewayPort):
    """
    Mock payment gateway for development and testing.

    Simulates a gateway without external API calls:
    - outcomes can be configured globally or scripted per call
    - charges are deduplicated by idempotency key, like a real gateway
    - every call is recorded in `calls`
    - charge statuses can be overridden for reconciliation scenarios
    """

    def __init__(self, latency: float = 0.0, timeout: float | None = None) -> None:
        self._settings = get_settings()
        self._timeout = timeout or self._settings.gateway_timeout_seconds
        self.latency = latency
        self.should_succeed = True
        self.should_timeout = False
        self.failure_reason = "Card declined"
        self.calls: list[dict[str, Any]] = []
        self._scripted: deque[Outcome] = deque()
        self._charges_by_key: dict[str, dict[str, Any]] = {}
        self._charges_by_order: dict[str, dict[str, Any]] = {}

    @property
    def provider_name(self) -> str:
        """Get the provider name."""
        return "mock"

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        should_timeout: bool = False,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.should_timeout = should_timeout

    def script(self, *outcomes: Outcome) -> None:
        """Queue outcomes consumed by the next charge/refund calls, in order."""
        self._scripted.extend(outcomes)

    @property
    def charges_created(self) -> int:
        """Number of distinct charges the gateway accepted."""
        return len(self._charges_by_key)

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method]

    def _next_outcome(self) -> Outcome:
        if self._scripted:
            return self._scripted.popleft()
        if self.should_timeout:
            return "timeout"
        return "success" if self.should_succeed else "reject"

    async def _simulate_latency(self) -> None:
        if self.latency:
            await with_timeout(self.provider_name, asyncio.sleep(self.latency), self._timeout)

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Create a mock charge."""
        self.calls.append(
            {
                "method": "charge",
                "amount": request.amount,
                "currency": request.currency,
                "order_ref": request.order_ref,
                "idempotency_key": request.idempotency_key,
                "attempt": request.attempt,
            }
        )
        await self._simulate_latency()

        existing = self._charges_by_key.get(request.idempotency_key)
        if existing is not None:
            return ChargeResult(
                gateway_charge_id=existing["id"], status=existing["status"], raw=dict(existing)
            )

        outcome = self._next_outcome()
        if outcome == "timeout":
            raise GatewayTimeoutError(self.provider_name, "request timed out")
        if outcome == "reject":
            self._charges_by_order[request.order_ref] = {"id": None, "status": "failed"}
            raise GatewayRejectedError(
                self.provider_name,
                self.failure_reason,
                status_code=402,
                response={"message": self.failure_reason},
            )

        charge = {
            "id": f"mock_ch_{secrets.token_hex(12)}",
            # "pending" accepts the charge without settling it
            "status": "processing" if outcome == "pending" else "succeeded",
            "amount": to_minor_units(request.amount),
            "currency": request.currency,
            "order_ref": request.order_ref,
        }
        self._charges_by_key[request.idempotency_key] = charge
        self._charges_by_order[request.order_ref] = charge
        return ChargeResult(
            gateway_charge_id=charge["id"], status=charge["status"], raw=dict(charge)
        )

    async def refund(
        self, gateway_charge_id: str, amount: Decimal, reason: str | None = None
    ) -> GatewayRefundResult:
        """Refund a mock charge."""
        self.calls.append(
            {
                "method": "refund",
                "gateway_charge_id": gateway_charge_id,
                "amount": amount,
                "reason": reason,
            }
        )
        await self._simulate_latency()

        outcome = self._next_outcome()
        if outcome == "timeout":
            raise GatewayTimeoutError(self.provider_name, "request timed out")
        if outcome == "reject":
            raise GatewayRejectedError(
                self.provider_name,
                self.failure_reason,
                status_code=400,
                response={"message": self.failure_reason},
            )

        refund_id = f"mock_re_{secrets.token_hex(8)}"
        return GatewayRefundResult(
            gateway_refund_id=refund_id,
            status="pending",
            raw={"id": refund_id, "status": "pending", "amount": to_minor_units(amount)},
        )

    async def get_charge_status(
        self, order_ref: str, gateway_charge_id: str | None = None
    ) -> GatewayChargeStatus:
        """Report the recorded status of the charge for an order."""
        self.calls.append(
            {
                "method": "get_charge_status",
                "order_ref": order_ref,
                "gateway_charge_id": gateway_charge_id,
            }
        )
        charge = self._charges_by_order.get(order_ref)
        if charge is None:
            return GatewayChargeStatus(state=GatewayChargeState.NOT_FOUND)
        return GatewayChargeStatus(
            state=GatewayChargeState.from_gateway(charge["status"]),
            gateway_charge_id=charge["id"],
            raw=dict(charge),
        )

    def set_charge_status(
        self, order_ref: str, status: str, gateway_charge_id: str | None = None
    ) -> None:
        """Simulate a charge the gateway knows about in the given status (for testing)."""
        self._charges_by_order[order_ref] = {
            "id": gateway_charge_id or f"mock_ch_{secrets.token_hex(12)}",
            "status": status,
            "order_ref": order_ref,
        }
