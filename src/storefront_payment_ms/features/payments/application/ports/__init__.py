"""Payment application ports."""

from storefront_payment_ms.features.payments.application.ports.payment_gateway_port import (
    ChargeRequest,
    ChargeResult,
    GatewayChargeStatus,
    GatewayRefundResult,
    PaymentGatewayPort,
    to_minor_units,
    with_timeout,
)

__all__ = [
    "ChargeRequest",
    "ChargeResult",
    "GatewayChargeStatus",
    "GatewayRefundResult",
    "PaymentGatewayPort",
    "to_minor_units",
    "with_timeout",
]
