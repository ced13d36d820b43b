"""Payment use cases."""

from storefront_payment_ms.features.payments.application.use_cases.payment_coordinator import (
    AttemptOutcome,
    PaymentCoordinator,
    PaymentResult,
    ProcessPaymentRequest,
    RefundOutcome,
    RefundRequest,
)

__all__ = [
    "AttemptOutcome",
    "PaymentCoordinator",
    "PaymentResult",
    "ProcessPaymentRequest",
    "RefundOutcome",
    "RefundRequest",
]
