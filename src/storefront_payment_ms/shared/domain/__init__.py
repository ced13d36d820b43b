"""Shared domain module - Exceptions and types."""

from storefront_payment_ms.shared.domain.clock import utcnow
from storefront_payment_ms.shared.domain.exceptions import (
    GatewayError,
    GatewayRejectedError,
    GatewayTimeoutError,
    IdempotencyConflictError,
    OrderNotFoundError,
    PaymentError,
    PaymentProcessingError,
    ReconciliationError,
    RefundProcessingError,
    RefundValidationError,
    RetryNotAllowedError,
    ServiceUnavailableError,
    WebhookPayloadError,
    WebhookVerificationError,
)

__all__ = [
    "utcnow",
    "GatewayError",
    "GatewayRejectedError",
    "GatewayTimeoutError",
    "IdempotencyConflictError",
    "OrderNotFoundError",
    "PaymentError",
    "PaymentProcessingError",
    "ReconciliationError",
    "RefundProcessingError",
    "RefundValidationError",
    "RetryNotAllowedError",
    "ServiceUnavailableError",
    "WebhookPayloadError",
    "WebhookVerificationError",
]
