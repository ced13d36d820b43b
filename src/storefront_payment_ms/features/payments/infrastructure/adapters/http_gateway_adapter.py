"""Generic REST payment gateway adapter."""

from decimal import Decimal
from typing import Any

import httpx
import structlog

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
    GatewayError,
    GatewayRejectedError,
    GatewayTimeoutError,
)

logger = structlog.get_logger(__name__)


class HttpGatewayAdapter(PaymentGatewayPort):
    """
    Payment gateway reached over HTTPS.

    Endpoints:
    - POST /v1/payments          create a charge (X-Idempotency-Key header)
    - POST /v1/refunds           refund a charge
    - GET  /v1/payments/{id}     charge status by id
    - GET  /v1/payments?orderId= charges for an order
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.gateway_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.gateway_api_key
        self._timeout = timeout or settings.gateway_timeout_seconds
        self._transport = transport

    @property
    def provider_name(self) -> str:
        """Get the provider name."""
        return "http"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request under the hard timeout, mapping transport errors."""

        async def send() -> httpx.Response:
            async with self._client() as client:
                return await client.request(
                    method, path, json=json, params=params, headers=headers
                )

        try:
            return await with_timeout(self.provider_name, send(), self._timeout)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(self.provider_name, "request timed out") from e
        except httpx.RequestError as e:
            raise GatewayError(self.provider_name, f"request failed: {e}") from e

    def _rejected(self, response: httpx.Response) -> GatewayRejectedError:
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}
        message = body.get("message", "Unknown error") if isinstance(body, dict) else "Unknown error"
        return GatewayRejectedError(
            self.provider_name,
            f"{response.status_code} - {message}",
            status_code=response.status_code,
            response=body if isinstance(body, dict) else {"body": body},
        )

    def _decode(self, response: httpx.Response, *, require_id: bool = True) -> dict[str, Any]:
        """Parse a 2xx body, rejecting anything that is not a usable JSON object."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or (require_id and not body.get("id")):
            raise GatewayRejectedError(
                self.provider_name,
                f"{response.status_code} - malformed response body",
                status_code=response.status_code,
                response=body if isinstance(body, dict) else {"raw": response.text[:500]},
            )
        return body

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Create a charge on the gateway."""
        response = await self._request(
            "POST",
            "/v1/payments",
            json={
                "amount": to_minor_units(request.amount),
                "currency": request.currency,
                "orderId": request.order_ref,
                "customerId": request.customer_id,
                "description": f"Order {request.order_ref}",
                "metadata": {"orderId": request.order_ref, "attempt": request.attempt},
            },
            headers={
                "X-Idempotency-Key": request.idempotency_key,
                "X-Attempt": str(request.attempt),
            },
        )

        if response.is_error:
            raise self._rejected(response)

        body = self._decode(response)
        return ChargeResult(
            gateway_charge_id=str(body["id"]),
            status=body.get("status", "succeeded"),
            raw=body,
        )

    async def refund(
        self, gateway_charge_id: str, amount: Decimal, reason: str | None = None
    ) -> GatewayRefundResult:
        """Refund a charge."""
        response = await self._request(
            "POST",
            "/v1/refunds",
            json={
                "paymentId": gateway_charge_id,
                "amount": to_minor_units(amount),
                "reason": reason or "customer_request",
            },
        )

        if response.is_error:
            raise self._rejected(response)

        body = self._decode(response)
        return GatewayRefundResult(
            gateway_refund_id=str(body["id"]),
            status=body.get("status", "pending"),
            raw=body,
        )

    async def get_charge_status(
        self, order_ref: str, gateway_charge_id: str | None = None
    ) -> GatewayChargeStatus:
        """Query the charge status by id, or by order reference."""
        if gateway_charge_id:
            response = await self._request("GET", f"/v1/payments/{gateway_charge_id}")
        else:
            response = await self._request("GET", "/v1/payments", params={"orderId": order_ref})

        if response.status_code == 404:
            return GatewayChargeStatus(state=GatewayChargeState.NOT_FOUND)
        if response.is_error:
            raise self._rejected(response)

        body = self._decode(response, require_id=bool(gateway_charge_id))
        if not gateway_charge_id:
            charges = body.get("data")
            if not charges:
                return GatewayChargeStatus(state=GatewayChargeState.NOT_FOUND, raw={"data": []})
            if not isinstance(charges, list) or not isinstance(charges[0], dict):
                raise GatewayRejectedError(
                    self.provider_name,
                    f"{response.status_code} - malformed response body",
                    status_code=response.status_code,
                    response=body,
                )
            body = charges[0]

        state = GatewayChargeState.from_gateway(body.get("status"))
        logger.debug("gateway_status_fetched", order_id=order_ref, status=body.get("status"))
        return GatewayChargeStatus(
            state=state,
            gateway_charge_id=body.get("id"),
            raw=body,
        )
