"""Dependency providers for the payment engine components."""

from functools import lru_cache

from storefront_payment_ms.features.payments.application.circuit_breaker import (
    CircuitBreakerRegistry,
)
from storefront_payment_ms.features.payments.application.use_cases import PaymentCoordinator
from storefront_payment_ms.features.payments.infrastructure.provider_factory import (
    get_payment_gateway,
)
from storefront_payment_ms.shared.infrastructure.database import get_session_factory


@lru_cache
def get_circuit_breakers() -> CircuitBreakerRegistry:
    """Process-wide breaker registry shared by the coordinator and the reconciler."""
    return CircuitBreakerRegistry()


def get_payment_coordinator() -> PaymentCoordinator:
    """Dependency for getting the payment coordinator."""
    return PaymentCoordinator(
        session_factory=get_session_factory(),
        gateway=get_payment_gateway(),
        breakers=get_circuit_breakers(),
    )
