"""Repositories for the order payment fields and the payment/refund logs."""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_payment_ms.features.payments.domain.entities import (
    Order,
    PaymentLogEntry,
    RefundLogEntry,
)
from storefront_payment_ms.features.payments.domain.enums import PaymentStatus, RefundStatus
from storefront_payment_ms.shared.domain.clock import utcnow
from storefront_payment_ms.shared.infrastructure.database.models import (
    OrderModel,
    PaymentLogModel,
    RefundLogModel,
)

# Statuses from which a new charge may be started
PAYABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


class OrderRepository:
    """
    Order repository using async SQLAlchemy.

    Every write is a single UPDATE against one order row, so the row is the
    lock boundary. Transactions are owned by the caller.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, order: Order) -> Order:
        """Insert an order (used by the order system and by tests)."""
        model = OrderModel.from_domain(order)
        self._session.add(model)
        await self._session.flush()
        return model.to_domain()

    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        """
        Get an order by its ID.

        Args:
            order_id: ID of the order
            for_update: Lock the row until the surrounding transaction ends

        Returns:
            Order if found, None otherwise
        """
        query = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query.execution_options(populate_existing=True))
        model = result.scalar_one_or_none()
        return model.to_domain() if model else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Get the order bound to an idempotency key."""
        result = await self._session.execute(
            select(OrderModel)
            .where(OrderModel.idempotency_key == key)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_domain() if model else None

    async def begin_payment(self, order_id: str, idempotency_key: str) -> bool:
        """
        Bind the idempotency key and move the order to processing.

        The update only matches a payable order that is not already bound to
        this key. Returns False when another caller got there first. Raises
        IntegrityError when the key is bound to a different order.
        """
        now = utcnow()
        result = await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status.in_(PAYABLE_STATUSES),
                (OrderModel.idempotency_key.is_(None))
                | (OrderModel.idempotency_key != idempotency_key),
            )
            .values(
                idempotency_key=idempotency_key,
                payment_status=PaymentStatus.PROCESSING.value,
                payment_gateway_id=None,
                payment_attempts=OrderModel.payment_attempts + 1,
                last_payment_attempt=now,
                reconciliation_attempts=0,
                updated_at=now,
            )
        )
        return result.rowcount == 1

    async def record_attempt(self, order_id: str) -> None:
        """Stamp the time of the latest gateway attempt."""
        await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(OrderModel.id == order_id)
            .values(last_payment_attempt=utcnow())
        )

    async def mark_completed(self, order_id: str, payment_gateway_id: str | None) -> None:
        """Set the order to completed and store the gateway charge id."""
        values: dict[str, Any] = {"payment_status": PaymentStatus.COMPLETED.value}
        if payment_gateway_id:
            values["payment_gateway_id"] = payment_gateway_id
        await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(OrderModel.id == order_id)
            .values(**values)
        )

    async def record_charge(self, order_id: str, payment_gateway_id: str) -> None:
        """Store the gateway charge id of an accepted but unsettled charge."""
        await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(OrderModel.id == order_id)
            .values(payment_gateway_id=payment_gateway_id)
        )

    async def update_status(self, order_id: str, status: PaymentStatus) -> None:
        """Update an order's payment status."""
        await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(OrderModel.id == order_id)
            .values(payment_status=status.value)
        )

    async def defer_reconciliation(self, order_id: str) -> None:
        """Refresh the attempt timestamp and count an inconclusive pass."""
        await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(OrderModel.id == order_id)
            .values(
                last_payment_attempt=utcnow(),
                reconciliation_attempts=OrderModel.reconciliation_attempts + 1,
            )
        )

    async def reset_reconciliation(self, order_id: str) -> None:
        await self._session.execute(
            update(OrderModel)
            .execution_options(synchronize_session=False)
            .where(OrderModel.id == order_id)
            .values(reconciliation_attempts=0)
        )

    async def find_stuck(
        self,
        older_than: datetime,
        max_reconciliation_attempts: int,
        limit: int = 100,
    ) -> List[Order]:
        """
        Find orders stuck in processing.

        Args:
            older_than: Only orders whose last attempt is before this time
            max_reconciliation_attempts: Escalated orders are skipped
            limit: Maximum number of orders per sweep

        Returns:
            Stuck orders, oldest first
        """
        result = await self._session.execute(
            select(OrderModel)
            .where(
                OrderModel.payment_status == PaymentStatus.PROCESSING.value,
                OrderModel.last_payment_attempt < older_than,
                OrderModel.reconciliation_attempts < max_reconciliation_attempts,
            )
            .order_by(OrderModel.last_payment_attempt.asc())
            .limit(limit)
        )
        return [m.to_domain() for m in result.scalars().all()]

    async def count(
        self,
        status: PaymentStatus,
        older_than: datetime | None = None,
        min_reconciliation_attempts: int | None = None,
    ) -> int:
        """Count orders in a status, optionally restricted to stuck/escalated ones."""
        query = select(func.count(OrderModel.id)).where(OrderModel.payment_status == status.value)
        if older_than is not None:
            query = query.where(OrderModel.last_payment_attempt < older_than)
        if min_reconciliation_attempts is not None:
            query = query.where(OrderModel.reconciliation_attempts >= min_reconciliation_attempts)
        result = await self._session.execute(query)
        return int(result.scalar_one())


class PaymentLogRepository:
    """Append-only access to the payment audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, entry: PaymentLogEntry) -> PaymentLogEntry:
        self._session.add(PaymentLogModel.from_domain(entry))
        await self._session.flush()
        return entry

    async def list_for_order(self, order_id: str) -> List[PaymentLogEntry]:
        """All log entries of an order in insertion order."""
        result = await self._session.execute(
            select(PaymentLogModel)
            .where(PaymentLogModel.order_id == order_id)
            .order_by(PaymentLogModel.created_at.asc())
        )
        return [m.to_domain() for m in result.scalars().all()]


class RefundLogRepository:
    """Refund log repository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, refund: RefundLogEntry) -> RefundLogEntry:
        model = RefundLogModel.from_domain(refund)
        self._session.add(model)
        await self._session.flush()
        return model.to_domain()

    async def get_by_id(self, refund_log_id: str) -> Optional[RefundLogEntry]:
        result = await self._session.execute(
            select(RefundLogModel)
            .where(RefundLogModel.id == refund_log_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_domain() if model else None

    async def get_by_refund_id(
        self, refund_id: str, for_update: bool = False
    ) -> Optional[RefundLogEntry]:
        """Get a refund by the gateway's refund reference."""
        query = select(RefundLogModel).where(RefundLogModel.refund_id == refund_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query.execution_options(populate_existing=True))
        model = result.scalar_one_or_none()
        return model.to_domain() if model else None

    async def update_status(
        self,
        refund_log_id: str,
        status: RefundStatus,
        gateway_response: dict[str, Any] | None = None,
        refund_id: str | None = None,
    ) -> None:
        """Update a refund's status and gateway data."""
        values: dict[str, Any] = {"status": status.value}
        if gateway_response is not None:
            values["gateway_response"] = gateway_response
        if refund_id is not None:
            values["refund_id"] = refund_id
        await self._session.execute(
            update(RefundLogModel)
            .execution_options(synchronize_session=False)
            .where(RefundLogModel.id == refund_log_id)
            .values(**values)
        )

    async def list_for_order(self, order_id: str) -> List[RefundLogEntry]:
        result = await self._session.execute(
            select(RefundLogModel)
            .where(RefundLogModel.order_id == order_id)
            .order_by(RefundLogModel.created_at.asc())
        )
        return [m.to_domain() for m in result.scalars().all()]
