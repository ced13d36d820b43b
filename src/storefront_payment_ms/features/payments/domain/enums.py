"""Payment domain enums."""

from enum import Enum


class PaymentStatus(str, Enum):
    """Order payment status.

    Values match the `orders.payment_status` varchar column.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }
)


class PaymentLogStatus(str, Enum):
    """Lifecycle status recorded in the payment audit log."""

    INITIATED = "initiated"
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    WEBHOOK_SUCCESS = "webhook_success"
    WEBHOOK_FAILED = "webhook_failed"
    WEBHOOK_CANCELLED = "webhook_cancelled"
    RECONCILED_SUCCESS = "reconciled_success"
    RECONCILED_FAILED = "reconciled_failed"


class RefundStatus(str, Enum):
    """Refund log status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GatewayEventType(str, Enum):
    """Webhook event types delivered by the payment gateway."""

    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_CANCELLED = "payment.cancelled"
    REFUND_SUCCEEDED = "refund.succeeded"
    REFUND_FAILED = "refund.failed"


class GatewayChargeState(str, Enum):
    """Normalized charge state reported by a gateway status query."""

    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @classmethod
    def from_gateway(cls, raw_status: str | None) -> "GatewayChargeState":
        """Map a raw gateway status string to a charge state."""
        match (raw_status or "").lower():
            case "completed" | "paid" | "succeeded":
                return cls.COMPLETED
            case "failed" | "cancelled" | "canceled":
                return cls.FAILED
            case "pending" | "processing" | "requires_action" | "requires_capture":
                return cls.PENDING
            case "not_found":
                return cls.NOT_FOUND
            case _:
                return cls.UNKNOWN
