"""Stripe Payment Gateway Adapter."""

import asyncio
from decimal import Decimal
from typing import Any

import stripe

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

# PaymentIntent states the gateway accepted. "processing" has not settled yet,
# so the order stays processing until a webhook or reconciliation confirms it
ACCEPTED_INTENT_STATUSES = ("succeeded", "processing")


def _intent_payload(intent: Any) -> dict[str, Any]:
    return {
        "id": intent.id,
        "status": intent.status,
        "amount": intent.amount,
        "currency": intent.currency,
    }


class StripePaymentAdapter(PaymentGatewayPort):
    """
    Stripe payment gateway adapter.

    Uses PaymentIntents confirmed server-side. The SDK is synchronous, so
    each call runs in a worker thread under the hard timeout.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._settings = get_settings()
        self._timeout = timeout or self._settings.gateway_timeout_seconds
        stripe.api_key = self._settings.stripe_secret_key

    @property
    def provider_name(self) -> str:
        """Get the provider name."""
        return "stripe"

    async def _call(self, func: Any, /, **kwargs: Any) -> Any:
        try:
            return await with_timeout(
                self.provider_name, asyncio.to_thread(func, **kwargs), self._timeout
            )
        except stripe.CardError as e:
            raise GatewayRejectedError(
                self.provider_name,
                e.user_message or str(e),
                status_code=e.http_status,
                response={"code": e.code, "decline_code": getattr(e, "decline_code", None)},
            ) from e
        except stripe.APIConnectionError as e:
            raise GatewayTimeoutError(self.provider_name, str(e)) from e
        except stripe.InvalidRequestError as e:
            raise GatewayRejectedError(
                self.provider_name, str(e), status_code=e.http_status
            ) from e
        except stripe.StripeError as e:
            raise GatewayError(self.provider_name, str(e)) from e

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        """Create and confirm a PaymentIntent."""
        params: dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "confirm": True,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            "description": f"Order {request.order_ref}",
            "metadata": {
                "order_id": request.order_ref,
                "customer_id": request.customer_id,
                "attempt": str(request.attempt),
            },
            # Stripe deduplicates retries sharing this key
            "idempotency_key": request.idempotency_key,
        }
        if request.payment_method:
            params["payment_method"] = request.payment_method

        intent = await self._call(stripe.PaymentIntent.create, **params)

        payload = _intent_payload(intent)
        if intent.status not in ACCEPTED_INTENT_STATUSES:
            raise GatewayRejectedError(
                self.provider_name,
                f"payment intent in status '{intent.status}'",
                response=payload,
            )

        return ChargeResult(gateway_charge_id=intent.id, status=intent.status, raw=payload)

    async def refund(
        self, gateway_charge_id: str, amount: Decimal, reason: str | None = None
    ) -> GatewayRefundResult:
        """Refund a PaymentIntent."""
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=gateway_charge_id,
            amount=to_minor_units(amount),
            reason="requested_by_customer",
            metadata={"reason": reason or ""},
        )
        return GatewayRefundResult(
            gateway_refund_id=refund.id,
            status=refund.status,
            raw={"id": refund.id, "status": refund.status, "amount": refund.amount},
        )

    async def get_charge_status(
        self, order_ref: str, gateway_charge_id: str | None = None
    ) -> GatewayChargeStatus:
        """Retrieve the PaymentIntent by id, or search it by order metadata."""
        if gateway_charge_id:
            try:
                intent = await self._call(stripe.PaymentIntent.retrieve, id=gateway_charge_id)
            except GatewayRejectedError as e:
                if e.status_code == 404:
                    return GatewayChargeStatus(state=GatewayChargeState.NOT_FOUND)
                raise
        else:
            result = await self._call(
                stripe.PaymentIntent.search,
                query=f"metadata['order_id']:'{order_ref}'",
                limit=1,
            )
            if not result.data:
                return GatewayChargeStatus(state=GatewayChargeState.NOT_FOUND)
            intent = result.data[0]

        return GatewayChargeStatus(
            state=GatewayChargeState.from_gateway(intent.status),
            gateway_charge_id=intent.id,
            raw=_intent_payload(intent),
        )
