"""Payment DTOs for API requests/responses."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront_payment_ms.features.payments.domain.entities import Order
from storefront_payment_ms.features.payments.domain.enums import PaymentStatus, RefundStatus


def _parse_decimal(v: Any) -> Decimal:
    try:
        amount = Decimal(v if isinstance(v, str) else str(v))
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {v!r}") from e
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {v!r}")
    return amount


class PaymentInitiateRequest(BaseModel):
    """Request to capture the payment of an order."""

    # Allow both camelCase (orderId) and snake_case (order_id)
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "orderId": "ord_123",
                "amount": "99.99",
                "currency": "USD",
                "customerId": "cus_456",
                "idempotencyKey": "checkout-7f3a",
            }
        },
    )

    order_id: str = Field(..., min_length=1, alias="orderId", description="Order to pay")
    amount: Decimal = Field(..., gt=0, description="Amount to charge")
    currency: str = Field(default="USD", min_length=3, max_length=3, description="ISO currency")
    customer_id: str = Field(..., min_length=1, alias="customerId", description="Paying customer")
    idempotency_key: str | None = Field(
        None,
        alias="idempotencyKey",
        description="Alternative to the Idempotency-Key header",
    )

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Decimal:
        """Parse amount to Decimal."""
        return _parse_decimal(v)

    @field_validator("currency", mode="before")
    @classmethod
    def parse_currency(cls, v: Any) -> str:
        """Parse currency to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v


class PaymentRetryRequest(BaseModel):
    """Request to retry the payment of an order."""

    model_config = ConfigDict(populate_by_name=True)

    idempotency_key: str | None = Field(None, alias="idempotencyKey")


class RefundCreateRequest(BaseModel):
    """Request to refund (part of) a paid order."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {"orderId": "ord_123", "amount": "20.00", "reason": "damaged item"}
        },
    )

    order_id: str = Field(..., min_length=1, alias="orderId")
    amount: Decimal = Field(..., description="Amount to refund")
    reason: str | None = Field(None, max_length=500)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Decimal:
        """Parse amount to Decimal."""
        return _parse_decimal(v)


class PaymentResultResponse(BaseModel):
    """Outcome of a payment request."""

    order_id: str
    status: PaymentStatus
    payment_gateway_id: str | None = None
    attempts: int
    replayed: bool = False


class PaymentStatusResponse(BaseModel):
    """Payment fields of an order."""

    order_id: str
    payment_status: PaymentStatus
    payment_gateway_id: str | None = None
    total: str
    currency: str
    payment_attempts: int
    last_payment_attempt: datetime | None = None
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "PaymentStatusResponse":
        return cls(
            order_id=order.id,
            payment_status=order.payment_status,
            payment_gateway_id=order.payment_gateway_id,
            total=str(order.total),
            currency=order.currency,
            payment_attempts=order.payment_attempts,
            last_payment_attempt=order.last_payment_attempt,
            updated_at=order.updated_at,
        )


class RefundResponse(BaseModel):
    """Refund accepted by the gateway."""

    refund_id: str
    gateway_refund_id: str
    status: RefundStatus
    amount: str
