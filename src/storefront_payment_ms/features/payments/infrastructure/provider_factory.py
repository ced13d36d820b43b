"""Payment gateway factory - Dependency injection."""

from functools import lru_cache

from storefront_payment_ms.features.payments.application.ports import PaymentGatewayPort
from storefront_payment_ms.features.payments.infrastructure.adapters import (
    HttpGatewayAdapter,
    MockPaymentAdapter,
    StripePaymentAdapter,
)
from storefront_payment_ms.shared.core.settings import get_settings


@lru_cache
def get_payment_gateway() -> PaymentGatewayPort:
    """
    Get the payment gateway based on configuration.

    Factory function for dependency injection.
    """
    settings = get_settings()

    match settings.payment_provider:
        case "http":
            return HttpGatewayAdapter()
        case "stripe":
            return StripePaymentAdapter()
        case "mock":
            return MockPaymentAdapter()
