"""ORM models for the payment tables.

Only the columns the payment engine reads or writes are mapped. The
`orders` table itself is owned by the order system.
"""

from decimal import Decimal

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)

from storefront_payment_ms.features.payments.domain.entities import (
    Order,
    PaymentLogEntry,
    RefundLogEntry,
)
from storefront_payment_ms.features.payments.domain.enums import (
    PaymentLogStatus,
    PaymentStatus,
    RefundStatus,
)
from storefront_payment_ms.shared.domain.clock import utcnow
from storefront_payment_ms.shared.infrastructure.database.connection import Base


class OrderModel(Base):
    """
    Order ORM model (payment subset).

    The unique index on `idempotency_key` is what serializes concurrent
    charges for the same key.
    """

    __tablename__ = "orders"

    id = Column(String(128), primary_key=True)

    customer_id = Column(String(36), nullable=False, index=True)

    total = Column(Numeric(10, 2), nullable=False)

    currency = Column(String(3), nullable=False, default="USD")

    payment_status = Column(
        String(50),
        nullable=False,
        default=PaymentStatus.PENDING.value,
        index=True,
    )

    idempotency_key = Column(String(255), nullable=True, unique=True)

    payment_gateway_id = Column(String(255), nullable=True, index=True)

    payment_attempts = Column(Integer, nullable=False, default=0)

    last_payment_attempt = Column(DateTime, nullable=True)

    reconciliation_attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("orders_payment_status_attempt_idx", "payment_status", "last_payment_attempt"),
    )

    def to_domain(self) -> Order:
        """Convert ORM model to domain entity."""
        return Order(
            id=self.id,
            customer_id=self.customer_id,
            total=Decimal(str(self.total)),
            currency=self.currency or "USD",
            payment_status=PaymentStatus(self.payment_status),
            idempotency_key=self.idempotency_key,
            payment_gateway_id=self.payment_gateway_id,
            payment_attempts=self.payment_attempts or 0,
            last_payment_attempt=self.last_payment_attempt,
            reconciliation_attempts=self.reconciliation_attempts or 0,
            created_at=self.created_at or utcnow(),
            updated_at=self.updated_at or utcnow(),
        )

    @classmethod
    def from_domain(cls, order: Order) -> "OrderModel":
        """Create ORM model from domain entity."""
        return cls(
            id=order.id,
            customer_id=order.customer_id,
            total=order.total,
            currency=order.currency,
            payment_status=order.payment_status.value,
            idempotency_key=order.idempotency_key,
            payment_gateway_id=order.payment_gateway_id,
            payment_attempts=order.payment_attempts,
            last_payment_attempt=order.last_payment_attempt,
            reconciliation_attempts=order.reconciliation_attempts,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class PaymentLogModel(Base):
    """Payment audit trail. Rows are inserted, never updated."""

    __tablename__ = "payment_logs"

    id = Column(String(128), primary_key=True)

    order_id = Column(String(128), ForeignKey("orders.id"), nullable=False)

    idempotency_key = Column(String(255), nullable=True, index=True)

    status = Column(String(50), nullable=False)

    attempt = Column(Integer, nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)

    currency = Column(String(3), nullable=False, default="USD")

    gateway_response = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("payment_logs_order_status_idx", "order_id", "status"),)

    def to_domain(self) -> PaymentLogEntry:
        return PaymentLogEntry(
            id=self.id,
            order_id=self.order_id,
            status=PaymentLogStatus(self.status),
            amount=Decimal(str(self.amount)),
            currency=self.currency,
            idempotency_key=self.idempotency_key,
            attempt=self.attempt,
            gateway_response=self.gateway_response or {},
            created_at=self.created_at,
        )

    @classmethod
    def from_domain(cls, entry: PaymentLogEntry) -> "PaymentLogModel":
        return cls(
            id=entry.id,
            order_id=entry.order_id,
            idempotency_key=entry.idempotency_key,
            status=entry.status.value,
            attempt=entry.attempt,
            amount=entry.amount,
            currency=entry.currency,
            gateway_response=entry.gateway_response,
            created_at=entry.created_at,
        )


class RefundLogModel(Base):
    """Refund log ORM model."""

    __tablename__ = "refund_logs"

    id = Column(String(128), primary_key=True)

    order_id = Column(String(128), ForeignKey("orders.id"), nullable=False, index=True)

    # Gateway refund reference, set once the gateway accepts
    refund_id = Column(String(255), nullable=True, index=True)

    amount = Column(Numeric(10, 2), nullable=False)

    reason = Column(String(255), nullable=True)

    status = Column(String(50), nullable=False, default=RefundStatus.PENDING.value)

    gateway_response = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_domain(self) -> RefundLogEntry:
        return RefundLogEntry(
            id=self.id,
            order_id=self.order_id,
            amount=Decimal(str(self.amount)),
            reason=self.reason,
            status=RefundStatus(self.status),
            refund_id=self.refund_id,
            gateway_response=self.gateway_response or {},
            created_at=self.created_at or utcnow(),
            updated_at=self.updated_at or utcnow(),
        )

    @classmethod
    def from_domain(cls, refund: RefundLogEntry) -> "RefundLogModel":
        return cls(
            id=refund.id,
            order_id=refund.order_id,
            refund_id=refund.refund_id,
            amount=refund.amount,
            reason=refund.reason,
            status=refund.status.value,
            gateway_response=refund.gateway_response,
            created_at=refund.created_at,
            updated_at=refund.updated_at,
        )
