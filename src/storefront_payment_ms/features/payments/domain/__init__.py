"""Payment domain entities and value objects."""

from storefront_payment_ms.features.payments.domain.entities import (
    Order,
    PaymentLogEntry,
    RefundLogEntry,
)
from storefront_payment_ms.features.payments.domain.enums import (
    GatewayChargeState,
    GatewayEventType,
    PaymentLogStatus,
    PaymentStatus,
    RefundStatus,
)

__all__ = [
    "Order",
    "PaymentLogEntry",
    "RefundLogEntry",
    "GatewayChargeState",
    "GatewayEventType",
    "PaymentLogStatus",
    "PaymentStatus",
    "RefundStatus",
]
