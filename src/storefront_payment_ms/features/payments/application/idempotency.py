"""Idempotency key validation."""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_payment_ms.features.payments.domain.entities import Order
from storefront_payment_ms.features.payments.infrastructure.repository import OrderRepository
from storefront_payment_ms.shared.domain.exceptions import IdempotencyConflictError

logger = structlog.get_logger(__name__)


class IdempotencyGuard:
    """
    Guards payment requests by their caller-supplied idempotency key.

    The key is bound to an order by the coordinator's conditional update,
    backed by the unique index on `orders.idempotency_key`. The guard only
    reads: it tells the caller whether a key is free, replayable, or taken.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def validate(self, idempotency_key: str, order_id: str | None = None) -> Optional[Order]:
        """
        Look up the order bound to an idempotency key.

        Args:
            idempotency_key: Caller-supplied key
            order_id: Order the caller wants to pay, if known

        Returns:
            The bound order when the request is a replay, None when the key is free

        Raises:
            IdempotencyConflictError: The key is bound to a different order
        """
        async with self._session_factory() as session:
            existing = await OrderRepository(session).get_by_idempotency_key(idempotency_key)

        if existing is None:
            return None

        if order_id is not None and existing.id != order_id:
            logger.warning(
                "idempotency_conflict",
                idempotency_key=idempotency_key,
                bound_order_id=existing.id,
                requested_order_id=order_id,
            )
            raise IdempotencyConflictError(idempotency_key, existing.id, order_id)

        logger.info(
            "idempotent_replay",
            idempotency_key=idempotency_key,
            order_id=existing.id,
            payment_status=existing.payment_status.value,
        )
        return existing
