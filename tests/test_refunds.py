"""Refund initiation tests."""

from decimal import Decimal

import pytest
import pytest_asyncio

from storefront_payment_ms.features.payments.application.use_cases import RefundRequest
from storefront_payment_ms.features.payments.domain.enums import PaymentStatus, RefundStatus
from storefront_payment_ms.shared.domain.exceptions import (
    GatewayRejectedError,
    OrderNotFoundError,
    RefundProcessingError,
    RefundValidationError,
)

pytestmark = pytest.mark.application


@pytest_asyncio.fixture
async def paid_order(make_order):
    return await make_order(
        total="99.99",
        payment_status=PaymentStatus.COMPLETED,
        payment_gateway_id="ch_paid",
        idempotency_key="K1",
        payment_attempts=1,
    )


class TestInitiateRefund:
    async def test_partial_refund_is_accepted(
        self, coordinator, gateway, paid_order, load_order, refund_logs
    ) -> None:
        outcome = await coordinator.initiate_refund(
            RefundRequest(order_id=paid_order.id, amount=Decimal("20.00"), reason="damaged")
        )

        assert outcome.status == RefundStatus.PROCESSING
        assert outcome.refund_id.startswith("refund_")

        [call] = gateway.calls_to("refund")
        assert call["gateway_charge_id"] == "ch_paid"
        assert call["amount"] == Decimal("20.00")

        [refund] = await refund_logs(paid_order.id)
        assert refund.id == outcome.refund_id
        assert refund.status == RefundStatus.PROCESSING
        assert refund.refund_id == outcome.gateway_refund_id

        # The order only changes when the refund webhook arrives
        assert (await load_order(paid_order.id)).payment_status == PaymentStatus.COMPLETED

    async def test_full_amount_is_allowed(self, coordinator, paid_order) -> None:
        outcome = await coordinator.initiate_refund(
            RefundRequest(order_id=paid_order.id, amount=Decimal("99.99"))
        )
        assert outcome.amount == Decimal("99.99")

    @pytest.mark.parametrize("amount", ["100.00", "0", "-5.00"])
    async def test_invalid_amounts_write_nothing(
        self, coordinator, gateway, paid_order, refund_logs, amount: str
    ) -> None:
        with pytest.raises(RefundValidationError):
            await coordinator.initiate_refund(
                RefundRequest(order_id=paid_order.id, amount=Decimal(amount))
            )

        assert await refund_logs(paid_order.id) == []
        assert gateway.calls == []

    @pytest.mark.parametrize(
        "status", [PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.REFUNDED]
    )
    async def test_only_completed_orders(
        self, coordinator, make_order, refund_logs, status: PaymentStatus
    ) -> None:
        order = await make_order(payment_status=status)

        with pytest.raises(RefundValidationError, match="not eligible"):
            await coordinator.initiate_refund(
                RefundRequest(order_id=order.id, amount=Decimal("1.00"))
            )

        assert await refund_logs(order.id) == []

    async def test_missing_order(self, coordinator) -> None:
        with pytest.raises(OrderNotFoundError):
            await coordinator.initiate_refund(
                RefundRequest(order_id="missing", amount=Decimal("1"))
            )

    async def test_gateway_rejection_marks_refund_failed(
        self, coordinator, gateway, paid_order, load_order, refund_logs
    ) -> None:
        gateway.configure(should_succeed=False, failure_reason="Charge already refunded")

        with pytest.raises(RefundProcessingError) as exc_info:
            await coordinator.initiate_refund(
                RefundRequest(order_id=paid_order.id, amount=Decimal("10.00"))
            )

        assert isinstance(exc_info.value.last_error, GatewayRejectedError)
        [refund] = await refund_logs(paid_order.id)
        assert refund.id == exc_info.value.refund_id
        assert refund.status == RefundStatus.FAILED
        assert "Charge already refunded" in refund.gateway_response["error"]
        assert (await load_order(paid_order.id)).payment_status == PaymentStatus.COMPLETED

    async def test_gateway_timeout_marks_refund_failed(
        self, coordinator, gateway, paid_order, refund_logs
    ) -> None:
        gateway.script("timeout")

        with pytest.raises(RefundProcessingError):
            await coordinator.initiate_refund(
                RefundRequest(order_id=paid_order.id, amount=Decimal("10.00"))
            )

        [refund] = await refund_logs(paid_order.id)
        assert refund.status == RefundStatus.FAILED
