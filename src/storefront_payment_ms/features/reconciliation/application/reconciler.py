"""
Payment reconciler.

Periodically repairs orders stuck in `processing`: a charge whose response
was lost (timeout, crash, cancelled request) and whose webhook never
arrived. The gateway is asked for the authoritative charge status and the
order is confirmed or failed accordingly. The reconciler never charges.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_payment_ms.features.payments.application.circuit_breaker import (
    CircuitBreakerRegistry,
)
from storefront_payment_ms.features.payments.application.ports import (
    GatewayChargeStatus,
    PaymentGatewayPort,
)
from storefront_payment_ms.features.payments.application.transitions import (
    confirm_payment,
    fail_payment,
)
from storefront_payment_ms.features.payments.domain.entities import Order
from storefront_payment_ms.features.payments.domain.enums import (
    GatewayChargeState,
    PaymentLogStatus,
    PaymentStatus,
)
from storefront_payment_ms.features.payments.infrastructure.repository import OrderRepository
from storefront_payment_ms.shared.core.settings import Settings, get_settings
from storefront_payment_ms.shared.domain.clock import utcnow
from storefront_payment_ms.shared.domain.exceptions import (
    GatewayError,
    OrderNotFoundError,
    ReconciliationError,
)

logger = structlog.get_logger(__name__)


class ReconciliationStatus(str, Enum):
    """Result of reconciling one order."""

    COMPLETED = "completed"
    FAILED = "failed"
    STILL_PROCESSING = "still_processing"


@dataclass
class ReconciliationResult:
    order_id: str
    status: ReconciliationStatus
    escalated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "escalated": self.escalated,
        }


@dataclass
class ReconciliationSummary:
    """Counts of one sweep over stuck orders."""

    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_processing: int = 0
    escalated: int = 0
    errors: int = 0
    order_ids: list[str] = field(default_factory=list)

    def add(self, result: ReconciliationResult) -> None:
        self.checked += 1
        self.order_ids.append(result.order_id)
        match result.status:
            case ReconciliationStatus.COMPLETED:
                self.completed += 1
            case ReconciliationStatus.FAILED:
                self.failed += 1
            case ReconciliationStatus.STILL_PROCESSING:
                self.still_processing += 1
        if result.escalated:
            self.escalated += 1


class PaymentReconciler:
    """
    Background reconciliation of stuck payments.

    Orders whose gateway status stays inconclusive are re-checked on every
    sweep until `max_reconciliation_attempts` is reached; after that they
    are escalated (logged at error level) and left for an operator, who
    can run `reconcile_order` to try again.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGatewayPort,
        breakers: CircuitBreakerRegistry,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._breakers = breakers
        self._settings = settings or get_settings()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def _stuck_threshold(self) -> timedelta:
        return timedelta(seconds=self._settings.stuck_threshold_seconds)

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="payment-reconciler")
        logger.info(
            "reconciler_started",
            interval_seconds=self._settings.reconciliation_interval_seconds,
            stuck_threshold_seconds=self._settings.stuck_threshold_seconds,
        )

    async def stop(self) -> None:
        """Stop the periodic sweep and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("reconciler_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._settings.reconciliation_interval_seconds)
            try:
                await self.reconcile_stuck_orders()
            except Exception:
                logger.exception("reconciliation_sweep_failed")

    async def reconcile_stuck_orders(self) -> ReconciliationSummary:
        """Reconcile every order stuck in processing longer than the threshold."""
        async with self._session_factory() as session:
            stuck = await OrderRepository(session).find_stuck(
                utcnow() - self._stuck_threshold,
                self._settings.max_reconciliation_attempts,
            )

        summary = ReconciliationSummary()
        logger.info("reconciliation_sweep_started", stuck_orders=len(stuck))

        for order in stuck:
            try:
                summary.add(await self._reconcile(order))
            except Exception:
                summary.errors += 1
                logger.exception("order_reconciliation_failed", order_id=order.id)

        logger.info(
            "reconciliation_sweep_completed",
            checked=summary.checked,
            completed=summary.completed,
            failed=summary.failed,
            still_processing=summary.still_processing,
            escalated=summary.escalated,
            errors=summary.errors,
        )
        return summary

    async def reconcile_order(self, order_id: str) -> ReconciliationResult:
        """
        Reconcile one order on operator request.

        Ignores the stuck threshold and the escalation limit, and resets the
        inconclusive-pass counter.

        Raises:
            OrderNotFoundError: The order does not exist
            ReconciliationError: The order is not in processing
        """
        async with self._session_factory.begin() as session:
            orders = OrderRepository(session)
            order = await orders.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.payment_status != PaymentStatus.PROCESSING:
                raise ReconciliationError(order_id, order.payment_status.value)
            await orders.reset_reconciliation(order_id)

        logger.info("manual_reconciliation_requested", order_id=order_id)
        order.reconciliation_attempts = 0
        return await self._reconcile(order)

    async def _reconcile(self, order: Order) -> ReconciliationResult:
        log = logger.bind(order_id=order.id)
        status = await self._query_gateway(order) or GatewayChargeStatus(
            state=GatewayChargeState.UNKNOWN
        )
        gateway_response = {
            "source": "reconciliation",
            "gateway_state": status.state.value,
            **status.raw,
        }

        match status.state:
            case GatewayChargeState.COMPLETED:
                async with self._session_factory.begin() as session:
                    await confirm_payment(
                        session,
                        order.id,
                        status.gateway_charge_id,
                        PaymentLogStatus.RECONCILED_SUCCESS,
                        gateway_response,
                    )
                log.info("order_reconciled", status="completed")
                return ReconciliationResult(order.id, ReconciliationStatus.COMPLETED)

            case GatewayChargeState.FAILED | GatewayChargeState.NOT_FOUND:
                async with self._session_factory.begin() as session:
                    await fail_payment(
                        session,
                        order.id,
                        PaymentStatus.FAILED,
                        PaymentLogStatus.RECONCILED_FAILED,
                        gateway_response,
                    )
                log.info("order_reconciled", status="failed")
                return ReconciliationResult(order.id, ReconciliationStatus.FAILED)

            case _:
                escalated = await self._defer(order)
                log.info("order_still_processing", escalated=escalated)
                return ReconciliationResult(
                    order.id, ReconciliationStatus.STILL_PROCESSING, escalated=escalated
                )

    async def _query_gateway(self, order: Order) -> GatewayChargeStatus | None:
        """Ask the gateway for the charge status; None when it cannot answer."""
        breaker = self._breakers.get(self._gateway.provider_name)
        if not breaker.allow_request():
            logger.warning("reconciliation_skipped_circuit_open", order_id=order.id)
            return None

        try:
            status = await self._gateway.get_charge_status(order.id, order.payment_gateway_id)
        except GatewayError as e:
            breaker.record_failure()
            logger.warning("reconciliation_gateway_error", order_id=order.id, error=str(e))
            return None
        except asyncio.CancelledError:
            breaker.release_trial()
            raise
        except Exception:
            breaker.record_failure()
            raise

        breaker.record_success()
        return status

    async def _defer(self, order: Order) -> bool:
        """Count an inconclusive pass. Returns True when the order got escalated."""
        async with self._session_factory.begin() as session:
            orders = OrderRepository(session)
            current = await orders.get_by_id(order.id, for_update=True)
            if current is None or current.payment_status != PaymentStatus.PROCESSING:
                return False
            await orders.defer_reconciliation(order.id)

        attempts = current.reconciliation_attempts + 1
        if attempts >= self._settings.max_reconciliation_attempts:
            logger.error(
                "reconciliation_escalated",
                order_id=order.id,
                reconciliation_attempts=attempts,
                last_payment_attempt=(
                    current.last_payment_attempt.isoformat()
                    if current.last_payment_attempt
                    else None
                ),
            )
            return True
        return False

    async def get_stats(self) -> dict[str, Any]:
        """Counts of processing, stuck and escalated orders plus configuration."""
        async with self._session_factory() as session:
            orders = OrderRepository(session)
            processing = await orders.count(PaymentStatus.PROCESSING)
            stuck = await orders.count(
                PaymentStatus.PROCESSING, older_than=utcnow() - self._stuck_threshold
            )
            escalated = await orders.count(
                PaymentStatus.PROCESSING,
                min_reconciliation_attempts=self._settings.max_reconciliation_attempts,
            )

        return {
            "processing_orders": processing,
            "stuck_orders": stuck,
            "escalated_orders": escalated,
            "reconciliation_interval_seconds": self._settings.reconciliation_interval_seconds,
            "stuck_threshold_seconds": self._settings.stuck_threshold_seconds,
            "max_reconciliation_attempts": self._settings.max_reconciliation_attempts,
            "running": self.running,
            "circuit_breakers": self._breakers.snapshot(),
        }
