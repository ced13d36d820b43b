"""Payment domain entities."""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from storefront_payment_ms.features.payments.domain.enums import (
    PaymentLogStatus,
    PaymentStatus,
    RefundStatus,
)
from storefront_payment_ms.shared.domain.clock import utcnow


@dataclass
class Order:
    """Payment-relevant view of an order owned by the order system."""

    id: str
    customer_id: str
    total: Decimal
    currency: str = "USD"
    payment_status: PaymentStatus = PaymentStatus.PENDING
    idempotency_key: str | None = None
    payment_gateway_id: str | None = None
    payment_attempts: int = 0
    last_payment_attempt: datetime | None = None
    reconciliation_attempts: int = 0

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        customer_id: str,
        total: Decimal,
        currency: str = "USD",
        order_id: str | None = None,
    ) -> "Order":
        """Create a new order awaiting payment."""
        return cls(
            id=order_id or str(uuid4()),
            customer_id=customer_id,
            total=total,
            currency=currency.upper(),
        )

    def can_start_payment(self) -> bool:
        """Check if a charge may be started for this order."""
        return self.payment_status in (PaymentStatus.PENDING, PaymentStatus.FAILED)

    def accepts_success(self) -> bool:
        """Check if a confirmed charge would change this order."""
        return self.payment_status not in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)

    def accepts_failure(self, target: PaymentStatus) -> bool:
        """Check if a failure/cancellation report would change this order.

        A late failure never overrides a confirmed charge.
        """
        return self.payment_status not in (
            PaymentStatus.COMPLETED,
            PaymentStatus.REFUNDED,
            target,
        )

    def can_be_refunded(self) -> bool:
        """Check if order can be refunded."""
        return self.payment_status == PaymentStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "order_id": self.id,
            "customer_id": self.customer_id,
            "total": str(self.total),
            "currency": self.currency,
            "payment_status": self.payment_status.value,
            "payment_gateway_id": self.payment_gateway_id,
            "attempts": self.payment_attempts,
            "last_attempt": (
                self.last_payment_attempt.isoformat() if self.last_payment_attempt else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class PaymentLogEntry:
    """Append-only audit record of one payment lifecycle event."""

    id: str
    order_id: str
    status: PaymentLogStatus
    amount: Decimal
    currency: str
    idempotency_key: str | None = None
    attempt: int | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        order_id: str,
        status: PaymentLogStatus,
        amount: Decimal,
        currency: str,
        idempotency_key: str | None = None,
        attempt: int | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> "PaymentLogEntry":
        return cls(
            id=str(uuid4()),
            order_id=order_id,
            status=status,
            amount=amount,
            currency=currency,
            idempotency_key=idempotency_key,
            attempt=attempt,
            gateway_response=gateway_response or {},
        )


@dataclass
class RefundLogEntry:
    """Refund record, created before the gateway is called."""

    id: str
    order_id: str
    amount: Decimal
    reason: str | None = None
    status: RefundStatus = RefundStatus.PENDING
    refund_id: str | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, order_id: str, amount: Decimal, reason: str | None = None) -> "RefundLogEntry":
        """Create a pending refund with a locally generated id."""
        timestamp = int(time.time() * 1000)
        return cls(
            id=f"refund_{timestamp}_{secrets.token_hex(4)}",
            order_id=order_id,
            amount=amount,
            reason=reason,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "refund_id": self.refund_id,
            "amount": str(self.amount),
            "reason": self.reason,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
