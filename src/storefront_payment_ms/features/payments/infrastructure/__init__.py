"""Payment infrastructure module."""

from storefront_payment_ms.features.payments.infrastructure.adapters import (
    HttpGatewayAdapter,
    MockPaymentAdapter,
    StripePaymentAdapter,
)
from storefront_payment_ms.features.payments.infrastructure.repository import (
    OrderRepository,
    PaymentLogRepository,
    RefundLogRepository,
)

__all__ = [
    "HttpGatewayAdapter",
    "MockPaymentAdapter",
    "StripePaymentAdapter",
    "OrderRepository",
    "PaymentLogRepository",
    "RefundLogRepository",
]
