"""Order payment state transitions shared by webhooks and reconciliation.

Each function runs inside the caller's transaction and locks the order row
before deciding, so concurrent reports for the same order serialize.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_payment_ms.features.payments.domain.entities import PaymentLogEntry
from storefront_payment_ms.features.payments.domain.enums import PaymentLogStatus, PaymentStatus
from storefront_payment_ms.features.payments.infrastructure.repository import (
    OrderRepository,
    PaymentLogRepository,
)
from storefront_payment_ms.shared.domain.exceptions import OrderNotFoundError


async def confirm_payment(
    session: AsyncSession,
    order_id: str,
    payment_gateway_id: str | None,
    log_status: PaymentLogStatus,
    gateway_response: dict[str, Any],
) -> bool:
    """
    Mark an order's payment completed.

    Returns:
        False when the order was already completed or refunded
    """
    orders = OrderRepository(session)
    order = await orders.get_by_id(order_id, for_update=True)
    if order is None:
        raise OrderNotFoundError(order_id)
    if not order.accepts_success():
        return False

    await orders.mark_completed(order_id, payment_gateway_id)
    await PaymentLogRepository(session).append(
        PaymentLogEntry.create(
            order_id=order_id,
            status=log_status,
            amount=order.total,
            currency=order.currency,
            idempotency_key=order.idempotency_key,
            gateway_response=gateway_response,
        )
    )
    return True


async def fail_payment(
    session: AsyncSession,
    order_id: str,
    target: PaymentStatus,
    log_status: PaymentLogStatus,
    gateway_response: dict[str, Any],
) -> bool:
    """
    Move an order's payment to failed or cancelled.

    Returns:
        False when the order already is in `target` or was completed/refunded
    """
    orders = OrderRepository(session)
    order = await orders.get_by_id(order_id, for_update=True)
    if order is None:
        raise OrderNotFoundError(order_id)
    if not order.accepts_failure(target):
        return False

    await orders.update_status(order_id, target)
    await PaymentLogRepository(session).append(
        PaymentLogEntry.create(
            order_id=order_id,
            status=log_status,
            amount=order.total,
            currency=order.currency,
            idempotency_key=order.idempotency_key,
            gateway_response=gateway_response,
        )
    )
    return True
