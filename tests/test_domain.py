"""Domain entity, status mapping and webhook parsing tests."""

import json
import re
from decimal import Decimal

import pytest

from storefront_payment_ms.features.payments.application.ports import to_minor_units
from storefront_payment_ms.features.payments.domain.entities import Order, RefundLogEntry
from storefront_payment_ms.features.payments.domain.enums import (
    GatewayChargeState,
    GatewayEventType,
    PaymentStatus,
)
from storefront_payment_ms.features.webhooks.application.processor import parse_event
from storefront_payment_ms.features.webhooks.application.signature import (
    compute_signature,
    verify_signature,
)
from storefront_payment_ms.shared.domain.exceptions import (
    WebhookPayloadError,
    WebhookVerificationError,
)

pytestmark = pytest.mark.domain


class TestOrder:
    def test_create_defaults(self) -> None:
        order = Order.create(customer_id="cus_1", total=Decimal("99.99"), currency="usd")

        assert order.payment_status == PaymentStatus.PENDING
        assert order.currency == "USD"
        assert order.payment_attempts == 0
        assert order.idempotency_key is None

    @pytest.mark.parametrize(
        "status, payable",
        [
            (PaymentStatus.PENDING, True),
            (PaymentStatus.FAILED, True),
            (PaymentStatus.PROCESSING, False),
            (PaymentStatus.COMPLETED, False),
            (PaymentStatus.CANCELLED, False),
            (PaymentStatus.REFUNDED, False),
        ],
    )
    def test_can_start_payment(self, status: PaymentStatus, payable: bool) -> None:
        order = Order.create(customer_id="cus_1", total=Decimal("10"))
        order.payment_status = status
        assert order.can_start_payment() is payable

    def test_late_failure_never_overrides_confirmed_charge(self) -> None:
        order = Order.create(customer_id="cus_1", total=Decimal("10"))

        order.payment_status = PaymentStatus.COMPLETED
        assert not order.accepts_failure(PaymentStatus.FAILED)
        assert not order.accepts_failure(PaymentStatus.CANCELLED)

        order.payment_status = PaymentStatus.REFUNDED
        assert not order.accepts_failure(PaymentStatus.FAILED)
        assert not order.accepts_success()

        order.payment_status = PaymentStatus.PROCESSING
        assert order.accepts_failure(PaymentStatus.FAILED)
        assert order.accepts_success()

    def test_only_completed_orders_are_refundable(self) -> None:
        order = Order.create(customer_id="cus_1", total=Decimal("10"))
        assert not order.can_be_refunded()
        order.payment_status = PaymentStatus.COMPLETED
        assert order.can_be_refunded()

    def test_terminal_statuses(self) -> None:
        assert PaymentStatus.COMPLETED.is_terminal
        assert PaymentStatus.FAILED.is_terminal
        assert not PaymentStatus.PROCESSING.is_terminal
        assert not PaymentStatus.PENDING.is_terminal


def test_refund_id_format() -> None:
    refund = RefundLogEntry.create("ord_1", Decimal("5.00"), "damaged")

    assert re.fullmatch(r"refund_\d{13}_[0-9a-f]{8}", refund.id)
    assert refund.refund_id is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("completed", GatewayChargeState.COMPLETED),
        ("PAID", GatewayChargeState.COMPLETED),
        ("succeeded", GatewayChargeState.COMPLETED),
        ("failed", GatewayChargeState.FAILED),
        ("canceled", GatewayChargeState.FAILED),
        ("cancelled", GatewayChargeState.FAILED),
        ("pending", GatewayChargeState.PENDING),
        ("requires_action", GatewayChargeState.PENDING),
        ("not_found", GatewayChargeState.NOT_FOUND),
        ("mystery", GatewayChargeState.UNKNOWN),
        (None, GatewayChargeState.UNKNOWN),
    ],
)
def test_gateway_status_mapping(raw: str | None, expected: GatewayChargeState) -> None:
    assert GatewayChargeState.from_gateway(raw) == expected


def test_minor_units() -> None:
    assert to_minor_units(Decimal("99.99")) == 9999
    assert to_minor_units(Decimal("10")) == 1000


class TestSignature:
    body = b'{"event":"payment.succeeded"}'

    def test_valid_signature(self) -> None:
        verify_signature(self.body, compute_signature("secret", self.body), "secret")

    def test_prefixed_signature(self) -> None:
        verify_signature(self.body, "sha256=" + compute_signature("secret", self.body), "secret")

    def test_tampered_body(self) -> None:
        signature = compute_signature("secret", self.body)
        with pytest.raises(WebhookVerificationError):
            verify_signature(self.body + b" ", signature, "secret")

    @pytest.mark.parametrize("signature", [None, "", "deadbeef", "sha256=", "é"])
    def test_bad_signatures(self, signature: str | None) -> None:
        with pytest.raises(WebhookVerificationError):
            verify_signature(self.body, signature, "secret")

    def test_missing_secret_rejects_everything(self) -> None:
        with pytest.raises(WebhookVerificationError):
            verify_signature(self.body, compute_signature("", self.body), "")


class TestParseEvent:
    def test_payment_event(self) -> None:
        body = json.dumps(
            {
                "event": "payment.succeeded",
                "data": {"id": "ch_1", "amount": 9999, "currency": "USD", "status": "paid"},
                "metadata": {"orderId": "ord_1"},
            }
        ).encode()

        event = parse_event(body)

        assert event is not None
        assert event.type == GatewayEventType.PAYMENT_SUCCEEDED
        assert event.order_id == "ord_1"
        assert event.object_id == "ch_1"
        assert event.amount == Decimal("99.99")

    def test_snake_case_order_reference(self) -> None:
        body = json.dumps(
            {"event": "payment.failed", "data": {"id": "ch_1"}, "metadata": {"order_id": "o"}}
        ).encode()
        event = parse_event(body)
        assert event is not None and event.order_id == "o"

    def test_unknown_event_is_ignored(self) -> None:
        assert parse_event(b'{"event": "payment.disputed", "data": {}}') is None

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[1, 2]",
            b'{"event": "payment.succeeded", "data": {"id": "ch_1"}, "metadata": {}}',
            b'{"event": "refund.succeeded", "data": {}}',
            b'{"event": "payment.failed", "data": "x", "metadata": {"orderId": "o"}}',
        ],
    )
    def test_malformed_payloads(self, body: bytes) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_event(body)
