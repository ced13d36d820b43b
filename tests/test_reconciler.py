"""Reconciliation tests for orders stuck in processing."""

import asyncio
import secrets
from datetime import timedelta

import pytest

from storefront_payment_ms.features.payments.application.circuit_breaker import CircuitState
from storefront_payment_ms.features.payments.domain.enums import PaymentLogStatus, PaymentStatus
from storefront_payment_ms.features.reconciliation.application.reconciler import (
    PaymentReconciler,
    ReconciliationStatus,
)
from storefront_payment_ms.shared.domain.clock import utcnow
from storefront_payment_ms.shared.domain.exceptions import (
    GatewayTimeoutError,
    OrderNotFoundError,
    ReconciliationError,
)

pytestmark = pytest.mark.application


@pytest.fixture
def reconciler(session_factory, gateway, breakers, settings) -> PaymentReconciler:
    return PaymentReconciler(session_factory, gateway, breakers, settings)


@pytest.fixture
def stuck_order(make_order):
    """Factory for orders left in processing longer than the stuck threshold."""

    async def _make(minutes_ago: int = 11, **overrides):
        return await make_order(
            payment_status=PaymentStatus.PROCESSING,
            idempotency_key=f"K-{secrets.token_hex(4)}",
            payment_attempts=1,
            last_payment_attempt=utcnow() - timedelta(minutes=minutes_ago),
            **overrides,
        )

    return _make


class TestSweep:
    async def test_completed_charge_confirms_order(
        self, reconciler, gateway, stuck_order, load_order, payment_logs
    ) -> None:
        order = await stuck_order()
        gateway.set_charge_status(order.id, "succeeded", gateway_charge_id="ch_found")

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.checked == 1
        assert summary.completed == 1
        stored = await load_order(order.id)
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stored.payment_gateway_id == "ch_found"
        [entry] = await payment_logs(order.id)
        assert entry.status == PaymentLogStatus.RECONCILED_SUCCESS
        assert entry.gateway_response["source"] == "reconciliation"

    @pytest.mark.parametrize("gateway_status", ["failed", None])
    async def test_failed_or_unknown_charge_fails_order(
        self, reconciler, gateway, stuck_order, load_order, payment_logs, gateway_status
    ) -> None:
        order = await stuck_order()
        if gateway_status is not None:
            gateway.set_charge_status(order.id, gateway_status)

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.failed == 1
        assert (await load_order(order.id)).payment_status == PaymentStatus.FAILED
        [entry] = await payment_logs(order.id)
        assert entry.status == PaymentLogStatus.RECONCILED_FAILED

    async def test_pending_charge_is_deferred(
        self, reconciler, gateway, stuck_order, load_order, payment_logs
    ) -> None:
        order = await stuck_order()
        gateway.set_charge_status(order.id, "pending")

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.still_processing == 1
        stored = await load_order(order.id)
        assert stored.payment_status == PaymentStatus.PROCESSING
        assert stored.reconciliation_attempts == 1
        assert stored.last_payment_attempt > order.last_payment_attempt
        assert await payment_logs(order.id) == []

        # The refreshed timestamp keeps it out of the next sweep
        assert (await reconciler.reconcile_stuck_orders()).checked == 0

    async def test_recent_orders_are_left_alone(
        self, reconciler, gateway, stuck_order, make_order
    ) -> None:
        await stuck_order(minutes_ago=2)
        await make_order()

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.checked == 0
        assert gateway.calls == []

    async def test_reconciler_never_charges(self, reconciler, gateway, stuck_order) -> None:
        for _ in range(3):
            await stuck_order()

        await reconciler.reconcile_stuck_orders()

        assert gateway.calls_to("charge") == []
        assert len(gateway.calls_to("get_charge_status")) == 3


class TestEscalation:
    async def test_order_escalates_at_limit(
        self, reconciler, gateway, stuck_order, settings, load_order
    ) -> None:
        order = await stuck_order(
            reconciliation_attempts=settings.max_reconciliation_attempts - 1
        )
        gateway.set_charge_status(order.id, "pending")

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.escalated == 1
        stored = await load_order(order.id)
        assert stored.payment_status == PaymentStatus.PROCESSING
        assert stored.reconciliation_attempts == settings.max_reconciliation_attempts

    async def test_escalated_orders_are_skipped_but_counted(
        self, reconciler, gateway, stuck_order, settings
    ) -> None:
        await stuck_order(reconciliation_attempts=settings.max_reconciliation_attempts)
        await stuck_order()

        summary = await reconciler.reconcile_stuck_orders()
        stats = await reconciler.get_stats()

        assert summary.checked == 1
        assert stats["escalated_orders"] == 1
        assert stats["processing_orders"] == 1

    async def test_manual_reconcile_resets_counter(
        self, reconciler, gateway, stuck_order, settings, load_order
    ) -> None:
        order = await stuck_order(reconciliation_attempts=settings.max_reconciliation_attempts)
        gateway.set_charge_status(order.id, "pending")

        result = await reconciler.reconcile_order(order.id)

        assert result.status == ReconciliationStatus.STILL_PROCESSING
        assert not result.escalated
        assert (await load_order(order.id)).reconciliation_attempts == 1


class TestManualReconcile:
    async def test_recent_order_is_reconciled_on_request(
        self, reconciler, gateway, stuck_order, load_order
    ) -> None:
        order = await stuck_order(minutes_ago=0)
        gateway.set_charge_status(order.id, "paid")

        result = await reconciler.reconcile_order(order.id)

        assert result.status == ReconciliationStatus.COMPLETED
        assert result.to_dict() == {
            "order_id": order.id,
            "status": "completed",
            "escalated": False,
        }
        assert (await load_order(order.id)).payment_status == PaymentStatus.COMPLETED

    @pytest.mark.parametrize("status", [PaymentStatus.PENDING, PaymentStatus.COMPLETED])
    async def test_only_processing_orders(self, reconciler, make_order, status) -> None:
        order = await make_order(payment_status=status)

        with pytest.raises(ReconciliationError):
            await reconciler.reconcile_order(order.id)

    async def test_missing_order(self, reconciler) -> None:
        with pytest.raises(OrderNotFoundError):
            await reconciler.reconcile_order("missing")


class TestGatewayTrouble:
    async def test_gateway_error_defers_and_feeds_breaker(
        self, reconciler, gateway, breakers, stuck_order, load_order, monkeypatch
    ) -> None:
        order = await stuck_order()

        async def timeout(order_ref, gateway_charge_id=None):
            raise GatewayTimeoutError("mock", "request timed out")

        monkeypatch.setattr(gateway, "get_charge_status", timeout)

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.still_processing == 1
        assert summary.errors == 0
        assert breakers.get("mock").failure_count == 1
        stored = await load_order(order.id)
        assert stored.payment_status == PaymentStatus.PROCESSING
        assert stored.reconciliation_attempts == 1

    async def test_unexpected_error_fails_half_open_trial(
        self, reconciler, gateway, breakers, clock, stuck_order, load_order, monkeypatch
    ) -> None:
        breaker = breakers.get("mock")
        for _ in range(breaker.failure_threshold):
            breaker.record_failure()
        clock.advance(61)
        order = await stuck_order()

        async def broken(order_ref, gateway_charge_id=None):
            raise RuntimeError("unexpected payload")

        monkeypatch.setattr(gateway, "get_charge_status", broken)

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.errors == 1
        assert breaker.state == CircuitState.OPEN
        clock.advance(61)
        assert breaker.allow_request()
        assert (await load_order(order.id)).payment_status == PaymentStatus.PROCESSING

    async def test_open_circuit_skips_gateway(
        self, reconciler, gateway, breakers, stuck_order, load_order
    ) -> None:
        breaker = breakers.get("mock")
        for _ in range(breaker.failure_threshold):
            breaker.record_failure()
        order = await stuck_order()

        summary = await reconciler.reconcile_stuck_orders()

        assert summary.still_processing == 1
        assert gateway.calls == []
        assert (await load_order(order.id)).payment_status == PaymentStatus.PROCESSING


class TestBackgroundLoop:
    async def test_start_and_stop(
        self, session_factory, gateway, breakers, settings, stuck_order, load_order
    ) -> None:
        fast = settings.model_copy(update={"reconciliation_interval_seconds": 0.01})
        reconciler = PaymentReconciler(session_factory, gateway, breakers, fast)
        order = await stuck_order()
        gateway.set_charge_status(order.id, "succeeded")

        await reconciler.start()
        assert reconciler.running
        for _ in range(200):
            if (await load_order(order.id)).payment_status == PaymentStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await reconciler.stop()

        assert not reconciler.running
        assert (await load_order(order.id)).payment_status == PaymentStatus.COMPLETED

    async def test_stop_without_start(self, reconciler) -> None:
        await reconciler.stop()
        assert not reconciler.running


async def test_stats(reconciler, stuck_order, make_order, settings) -> None:
    await stuck_order()
    await stuck_order(minutes_ago=1)
    await make_order()

    stats = await reconciler.get_stats()

    assert stats["processing_orders"] == 2
    assert stats["stuck_orders"] == 1
    assert stats["escalated_orders"] == 0
    assert stats["running"] is False
    assert stats["max_reconciliation_attempts"] == settings.max_reconciliation_attempts
    assert stats["circuit_breakers"] == []
