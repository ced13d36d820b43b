"""Payment infrastructure adapters."""

from storefront_payment_ms.features.payments.infrastructure.adapters.http_gateway_adapter import (
    HttpGatewayAdapter,
)
from storefront_payment_ms.features.payments.infrastructure.adapters.mock_adapter import (
    MockPaymentAdapter,
)
from storefront_payment_ms.features.payments.infrastructure.adapters.stripe_adapter import (
    StripePaymentAdapter,
)

__all__ = ["HttpGatewayAdapter", "MockPaymentAdapter", "StripePaymentAdapter"]
