"""Domain exceptions for the Payment Microservice."""

from typing import Any


class PaymentError(Exception):
    """Base exception for payment errors."""

    pass


class OrderNotFoundError(PaymentError):
    """Raised when an order is not found."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order with ID '{order_id}' not found")


class IdempotencyConflictError(PaymentError):
    """Raised when an idempotency key is already bound to a different order."""

    def __init__(self, key: str, bound_order_id: str, requested_order_id: str | None) -> None:
        self.key = key
        self.bound_order_id = bound_order_id
        self.requested_order_id = requested_order_id
        super().__init__(
            f"Idempotency key '{key}' is already used for order '{bound_order_id}'"
        )


class ServiceUnavailableError(PaymentError):
    """Raised when the gateway circuit is open and calls are refused."""

    def __init__(self, breaker_key: str, retry_after: float | None = None) -> None:
        self.breaker_key = breaker_key
        self.retry_after = retry_after
        super().__init__(
            f"Payment service '{breaker_key}' temporarily unavailable"
        )


class GatewayError(PaymentError):
    """Base error for a failed call to the payment gateway."""

    def __init__(self, provider: str, message: str, response: dict[str, Any] | None = None) -> None:
        self.provider = provider
        self.response = response or {}
        super().__init__(f"Payment gateway '{provider}' error: {message}")


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer within the hard timeout.

    The charge may or may not have been created on the gateway side.
    """


class GatewayRejectedError(GatewayError):
    """The gateway explicitly declined or rejected the request."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        response: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(provider, message, response)


class PaymentProcessingError(PaymentError):
    """Raised when a payment failed after all retry attempts."""

    def __init__(self, order_id: str, attempts: int, last_error: Exception | None = None) -> None:
        self.order_id = order_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Payment for order '{order_id}' failed after {attempts} attempts")


class RetryNotAllowedError(PaymentError):
    """Raised when a payment retry is requested for an order that cannot be retried."""

    def __init__(self, order_id: str, reason: str) -> None:
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Payment retry not allowed for order '{order_id}': {reason}")


class RefundValidationError(PaymentError):
    """Raised when a refund request is not valid for the order."""

    def __init__(self, order_id: str, reason: str) -> None:
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Refund for order '{order_id}' rejected: {reason}")


class RefundProcessingError(PaymentError):
    """Raised when the gateway did not accept a refund."""

    def __init__(self, refund_id: str, last_error: Exception) -> None:
        self.refund_id = refund_id
        self.last_error = last_error
        super().__init__(f"Refund '{refund_id}' failed: {last_error}")


class WebhookVerificationError(PaymentError):
    """Raised when webhook signature verification fails."""

    def __init__(self, reason: str = "Invalid signature") -> None:
        super().__init__(f"Webhook verification failed: {reason}")


class WebhookPayloadError(PaymentError):
    """Raised when a verified webhook body cannot be interpreted."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid webhook payload: {reason}")


class ReconciliationError(PaymentError):
    """Raised when an order is not in a reconcilable state."""

    def __init__(self, order_id: str, status: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order '{order_id}' is not in processing state (status: '{status}')")
