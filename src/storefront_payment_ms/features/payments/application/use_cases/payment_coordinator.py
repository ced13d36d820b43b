"""Payment use cases - Process payment and initiate refund."""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_payment_ms.features.payments.application.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
)
from storefront_payment_ms.features.payments.application.idempotency import IdempotencyGuard
from storefront_payment_ms.features.payments.application.ports import (
    ChargeRequest,
    ChargeResult,
    PaymentGatewayPort,
)
from storefront_payment_ms.features.payments.domain.entities import (
    Order,
    PaymentLogEntry,
    RefundLogEntry,
)
from storefront_payment_ms.features.payments.domain.enums import (
    GatewayChargeState,
    PaymentLogStatus,
    PaymentStatus,
    RefundStatus,
)
from storefront_payment_ms.features.payments.infrastructure.repository import (
    OrderRepository,
    PaymentLogRepository,
    RefundLogRepository,
)
from storefront_payment_ms.shared.core.settings import Settings, get_settings
from storefront_payment_ms.shared.domain.exceptions import (
    GatewayError,
    OrderNotFoundError,
    PaymentProcessingError,
    RefundProcessingError,
    RefundValidationError,
    RetryNotAllowedError,
    ServiceUnavailableError,
)

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class ProcessPaymentRequest:
    """Request to capture the payment of an order."""

    order_id: str
    amount: Decimal
    currency: str
    customer_id: str
    idempotency_key: str


@dataclass
class PaymentResult:
    """Outcome of a payment request, fresh or replayed."""

    order_id: str
    status: PaymentStatus
    payment_gateway_id: str | None = None
    attempts: int = 0
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "payment_gateway_id": self.payment_gateway_id,
            "attempts": self.attempts,
            "replayed": self.replayed,
        }


@dataclass
class AttemptOutcome:
    """Result of one gateway attempt inside the retry loop."""

    attempt: int
    succeeded: bool
    charge: ChargeResult | None = None
    error: GatewayError | None = None
    circuit_open: bool = False
    # False when the gateway accepted the charge but has not settled it yet
    settled: bool = True


@dataclass
class RefundRequest:
    """Request to refund (part of) a completed order."""

    order_id: str
    amount: Decimal
    reason: str | None = None


@dataclass
class RefundOutcome:
    """Refund accepted by the gateway, awaiting its webhook."""

    refund_id: str
    gateway_refund_id: str
    status: RefundStatus
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "refund_id": self.refund_id,
            "gateway_refund_id": self.gateway_refund_id,
            "status": self.status.value,
            "amount": str(self.amount),
        }


class PaymentCoordinator:
    """
    Coordinates payment capture and refunds against the gateway.

    Guarantees at most one charge per idempotency key:
    1. The key is bound to the order in a committed transaction before any
       gateway call, so concurrent callers with the same key replay instead
       of charging.
    2. Gateway calls run in a bounded retry loop with exponential backoff,
       gated by the gateway's circuit breaker.
    3. Every attempt is written to the payment log, and no transaction is
       held open across a gateway call.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGatewayPort,
        breakers: CircuitBreakerRegistry,
        settings: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._breakers = breakers
        self._settings = settings or get_settings()
        self._sleep = sleep
        self._guard = IdempotencyGuard(session_factory)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def process_payment(self, request: ProcessPaymentRequest) -> PaymentResult:
        """
        Capture the payment of an order at most once.

        Raises:
            OrderNotFoundError: The order does not exist
            IdempotencyConflictError: The key belongs to another order
            ServiceUnavailableError: The gateway circuit is open
            PaymentProcessingError: All attempts failed
        """
        log = logger.bind(order_id=request.order_id, idempotency_key=request.idempotency_key)

        existing = await self._guard.validate(request.idempotency_key, request.order_id)
        if existing is not None:
            return await self._replay(existing)

        try:
            started = await self._begin_payment(request)
        except IntegrityError:
            # Key was bound to another order between validation and update
            existing = await self._guard.validate(request.idempotency_key, request.order_id)
            if existing is None:
                raise
            return await self._replay(existing)

        if not started:
            order = await self._load_order(request.order_id)
            log.info("payment_not_started", payment_status=order.payment_status.value)
            return await self._replay(order)

        log.info("payment_started", amount=str(request.amount), currency=request.currency)

        breaker = self._breakers.get(self._gateway.provider_name)
        max_attempts = self._settings.max_attempts
        last_error: GatewayError | None = None

        for attempt in range(1, max_attempts + 1):
            outcome = await self._attempt(request, attempt, breaker)

            if outcome.succeeded:
                assert outcome.charge is not None
                log.info(
                    "payment_completed" if outcome.settled else "payment_awaiting_settlement",
                    attempt=attempt,
                    payment_gateway_id=outcome.charge.gateway_charge_id,
                    gateway_status=outcome.charge.status,
                )
                return PaymentResult(
                    order_id=request.order_id,
                    status=PaymentStatus.COMPLETED if outcome.settled else PaymentStatus.PROCESSING,
                    payment_gateway_id=outcome.charge.gateway_charge_id,
                    attempts=attempt,
                )

            if outcome.circuit_open:
                await self._mark_failed(request.order_id)
                log.warning("payment_rejected_circuit_open", attempt=attempt, breaker=breaker.name)
                raise ServiceUnavailableError(breaker.name, breaker.retry_after())

            last_error = outcome.error
            if attempt < max_attempts:
                delay = self._settings.backoff_base_seconds * 2 ** (attempt - 1)
                log.info("payment_retry_scheduled", attempt=attempt, delay=delay)
                await self._sleep(delay)

        await self._mark_failed(request.order_id)
        log.error("payment_failed", attempts=max_attempts, error=str(last_error))
        raise PaymentProcessingError(request.order_id, max_attempts, last_error)

    async def _begin_payment(self, request: ProcessPaymentRequest) -> bool:
        async with self._session_factory.begin() as session:
            orders = OrderRepository(session)
            order = await orders.get_by_id(request.order_id)
            if order is None:
                raise OrderNotFoundError(request.order_id)

            if not await orders.begin_payment(request.order_id, request.idempotency_key):
                return False

            await PaymentLogRepository(session).append(
                PaymentLogEntry.create(
                    order_id=request.order_id,
                    status=PaymentLogStatus.INITIATED,
                    amount=request.amount,
                    currency=request.currency,
                    idempotency_key=request.idempotency_key,
                )
            )
        return True

    async def _attempt(
        self, request: ProcessPaymentRequest, attempt: int, breaker: CircuitBreaker
    ) -> AttemptOutcome:
        if not breaker.allow_request():
            await self._log_attempt(
                request,
                PaymentLogStatus.FAILED,
                attempt,
                {"error": "circuit_open", "reason": "circuit_open", "breaker": breaker.name},
            )
            return AttemptOutcome(attempt=attempt, succeeded=False, circuit_open=True)

        try:
            charge = await self._gateway.charge(
                ChargeRequest(
                    amount=request.amount,
                    currency=request.currency,
                    order_ref=request.order_id,
                    customer_id=request.customer_id,
                    idempotency_key=request.idempotency_key,
                    attempt=attempt,
                )
            )
        except GatewayError as e:
            breaker.record_failure()
            logger.warning(
                "payment_attempt_failed",
                order_id=request.order_id,
                attempt=attempt,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._log_attempt(
                request,
                PaymentLogStatus.FAILED,
                attempt,
                {"error": str(e), "error_type": type(e).__name__, "response": e.response},
                refresh_attempt=True,
            )
            return AttemptOutcome(attempt=attempt, succeeded=False, error=e)
        except asyncio.CancelledError:
            breaker.release_trial()
            raise
        except Exception as e:
            # Not a gateway answer we understand; the charge state is unknown,
            # so the order stays processing for reconciliation
            breaker.record_failure()
            logger.exception(
                "payment_attempt_errored", order_id=request.order_id, attempt=attempt
            )
            await self._log_attempt(
                request,
                PaymentLogStatus.FAILED,
                attempt,
                {"error": str(e), "error_type": type(e).__name__},
                refresh_attempt=True,
            )
            raise

        breaker.record_success()
        settled = GatewayChargeState.from_gateway(charge.status) != GatewayChargeState.PENDING
        async with self._session_factory.begin() as session:
            orders = OrderRepository(session)
            if settled:
                await orders.mark_completed(request.order_id, charge.gateway_charge_id)
            else:
                await orders.record_charge(request.order_id, charge.gateway_charge_id)
            await PaymentLogRepository(session).append(
                PaymentLogEntry.create(
                    order_id=request.order_id,
                    status=PaymentLogStatus.SUCCESS if settled else PaymentLogStatus.PENDING,
                    amount=request.amount,
                    currency=request.currency,
                    idempotency_key=request.idempotency_key,
                    attempt=attempt,
                    gateway_response=charge.raw,
                )
            )
        return AttemptOutcome(attempt=attempt, succeeded=True, charge=charge, settled=settled)

    async def _log_attempt(
        self,
        request: ProcessPaymentRequest,
        status: PaymentLogStatus,
        attempt: int,
        gateway_response: dict[str, Any],
        refresh_attempt: bool = False,
    ) -> None:
        async with self._session_factory.begin() as session:
            if refresh_attempt:
                await OrderRepository(session).record_attempt(request.order_id)
            await PaymentLogRepository(session).append(
                PaymentLogEntry.create(
                    order_id=request.order_id,
                    status=status,
                    amount=request.amount,
                    currency=request.currency,
                    idempotency_key=request.idempotency_key,
                    attempt=attempt,
                    gateway_response=gateway_response,
                )
            )

    async def _mark_failed(self, order_id: str) -> None:
        async with self._session_factory.begin() as session:
            orders = OrderRepository(session)
            order = await orders.get_by_id(order_id, for_update=True)
            # A webhook may have confirmed the charge meanwhile
            if order is not None and order.accepts_failure(PaymentStatus.FAILED):
                await orders.update_status(order_id, PaymentStatus.FAILED)

    async def _replay(self, order: Order) -> PaymentResult:
        """Report the outcome of an earlier request without calling the gateway.

        A request still in flight is polled until it settles or the wait
        bound elapses.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.replay_wait_seconds

        while (
            order.payment_status == PaymentStatus.PROCESSING
            and order.payment_gateway_id is None
            and loop.time() < deadline
        ):
            await asyncio.sleep(self._settings.replay_poll_interval_seconds)
            order = await self._load_order(order.id)

        return PaymentResult(
            order_id=order.id,
            status=order.payment_status,
            payment_gateway_id=order.payment_gateway_id,
            attempts=order.payment_attempts,
            replayed=True,
        )

    async def _load_order(self, order_id: str) -> Order:
        async with self._session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_payment_status(self, order_id: str) -> Order:
        """Get the payment fields of an order."""
        return await self._load_order(order_id)

    async def retry_payment(self, order_id: str, idempotency_key: str) -> PaymentResult:
        """
        Re-run a payment for an order that has not been paid.

        The order's own total and currency are charged. A fresh idempotency
        key is required, since the previous key replays the failed outcome.
        """
        order = await self._load_order(order_id)

        if order.payment_status == PaymentStatus.COMPLETED:
            raise RetryNotAllowedError(order_id, "payment already completed")
        if order.payment_attempts >= self._settings.max_payment_retries:
            raise RetryNotAllowedError(order_id, "maximum retry attempts exceeded")

        logger.info("payment_retry_requested", order_id=order_id, attempts=order.payment_attempts)
        return await self.process_payment(
            ProcessPaymentRequest(
                order_id=order.id,
                amount=order.total,
                currency=order.currency,
                customer_id=order.customer_id,
                idempotency_key=idempotency_key,
            )
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def initiate_refund(self, request: RefundRequest) -> RefundOutcome:
        """
        Issue a refund for a completed order.

        The refund record is committed before the gateway call. The order
        itself only changes when the gateway confirms through its webhook.

        Raises:
            OrderNotFoundError: The order does not exist
            RefundValidationError: The order or amount cannot be refunded
            RefundProcessingError: The gateway did not accept the refund
        """
        async with self._session_factory.begin() as session:
            order = await OrderRepository(session).get_by_id(request.order_id)
            if order is None:
                raise OrderNotFoundError(request.order_id)
            if not order.can_be_refunded():
                raise RefundValidationError(
                    request.order_id,
                    f"order not eligible for refund (status: {order.payment_status.value})",
                )
            if request.amount <= 0:
                raise RefundValidationError(request.order_id, "refund amount must be positive")
            if request.amount > order.total:
                raise RefundValidationError(request.order_id, "refund amount exceeds order total")

            refund = await RefundLogRepository(session).create(
                RefundLogEntry.create(request.order_id, request.amount, request.reason)
            )

        log = logger.bind(order_id=request.order_id, refund_id=refund.id)
        assert order.payment_gateway_id is not None

        try:
            result = await self._gateway.refund(
                order.payment_gateway_id, request.amount, request.reason
            )
        except GatewayError as e:
            async with self._session_factory.begin() as session:
                await RefundLogRepository(session).update_status(
                    refund.id,
                    RefundStatus.FAILED,
                    gateway_response={"error": str(e), "response": e.response},
                )
            log.error("refund_failed", error=str(e))
            raise RefundProcessingError(refund.id, e) from e

        async with self._session_factory.begin() as session:
            await RefundLogRepository(session).update_status(
                refund.id,
                RefundStatus.PROCESSING,
                gateway_response=result.raw,
                refund_id=result.gateway_refund_id,
            )

        log.info("refund_initiated", gateway_refund_id=result.gateway_refund_id)
        return RefundOutcome(
            refund_id=refund.id,
            gateway_refund_id=result.gateway_refund_id,
            status=RefundStatus.PROCESSING,
            amount=request.amount,
        )
