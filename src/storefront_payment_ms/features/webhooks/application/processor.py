"""Webhook processor - Applies verified gateway callbacks to orders and refunds."""

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, assert_never

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_payment_ms.features.payments.application.transitions import (
    confirm_payment,
    fail_payment,
)
from storefront_payment_ms.features.payments.domain.enums import (
    GatewayEventType,
    PaymentLogStatus,
    PaymentStatus,
    RefundStatus,
)
from storefront_payment_ms.features.payments.infrastructure.repository import (
    OrderRepository,
    RefundLogRepository,
)
from storefront_payment_ms.features.webhooks.application.signature import verify_signature
from storefront_payment_ms.shared.core.settings import get_settings
from storefront_payment_ms.shared.domain.exceptions import (
    OrderNotFoundError,
    WebhookPayloadError,
)

logger = structlog.get_logger(__name__)


@dataclass
class GatewayEvent:
    """A parsed webhook body."""

    type: GatewayEventType
    object_id: str | None
    order_id: str | None
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


def parse_event(raw_body: bytes) -> GatewayEvent | None:
    """
    Parse a webhook body.

    Returns:
        The event, or None when the event type is not one we handle

    Raises:
        WebhookPayloadError: Body is not a JSON object or lacks the references
            the event type needs
    """
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WebhookPayloadError(f"malformed JSON: {e}") from e

    if not isinstance(payload, dict):
        raise WebhookPayloadError("body must be a JSON object")

    try:
        event_type = GatewayEventType(payload.get("event"))
    except ValueError:
        return None

    data = payload.get("data") or {}
    metadata = payload.get("metadata") or {}
    if not isinstance(data, dict) or not isinstance(metadata, dict):
        raise WebhookPayloadError("'data' and 'metadata' must be objects")

    amount = data.get("amount")
    event = GatewayEvent(
        type=event_type,
        object_id=data.get("id"),
        order_id=metadata.get("orderId") or metadata.get("order_id"),
        status=data.get("status"),
        amount=Decimal(amount) / 100 if isinstance(amount, int) else None,
        currency=data.get("currency"),
        payload=payload,
    )

    if event_type.value.startswith("payment.") and not event.order_id:
        raise WebhookPayloadError("missing metadata.orderId")
    if event_type.value.startswith("refund.") and not event.object_id:
        raise WebhookPayloadError("missing data.id")
    return event


class WebhookProcessor:
    """
    Verifies and applies gateway webhooks.

    Redelivered events are no-ops: every transition checks the current
    state under a row lock before changing it, and a late failure never
    overrides a confirmed charge.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        webhook_secret: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._webhook_secret = (
            webhook_secret if webhook_secret is not None else get_settings().webhook_secret
        )

    async def handle(self, raw_body: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify, parse and apply one webhook.

        Raises:
            WebhookVerificationError: Signature rejected, nothing was parsed
            WebhookPayloadError: Body could not be interpreted
        """
        verify_signature(raw_body, signature, self._webhook_secret)

        event = parse_event(raw_body)
        if event is None:
            logger.warning("webhook_event_ignored", event=_event_name(raw_body))
            return {"status": "ignored"}

        log = logger.bind(
            event=event.type.value, order_id=event.order_id, object_id=event.object_id
        )
        log.info("webhook_received")

        processed = await self._dispatch(event)

        log.info("webhook_processed", processed=processed)
        return {"status": "ok", "processed": processed}

    async def _dispatch(self, event: GatewayEvent) -> bool:
        match event.type:
            case GatewayEventType.PAYMENT_SUCCEEDED:
                return await self._payment_succeeded(event)
            case GatewayEventType.PAYMENT_FAILED:
                return await self._payment_failed(
                    event, PaymentStatus.FAILED, PaymentLogStatus.WEBHOOK_FAILED
                )
            case GatewayEventType.PAYMENT_CANCELLED:
                return await self._payment_failed(
                    event, PaymentStatus.CANCELLED, PaymentLogStatus.WEBHOOK_CANCELLED
                )
            case GatewayEventType.REFUND_SUCCEEDED:
                return await self._refund_succeeded(event)
            case GatewayEventType.REFUND_FAILED:
                return await self._refund_failed(event)
            case _:
                assert_never(event.type)

    async def _payment_succeeded(self, event: GatewayEvent) -> bool:
        assert event.order_id is not None
        try:
            async with self._session_factory.begin() as session:
                return await confirm_payment(
                    session,
                    event.order_id,
                    event.object_id,
                    PaymentLogStatus.WEBHOOK_SUCCESS,
                    event.payload,
                )
        except OrderNotFoundError:
            logger.warning("webhook_order_not_found", order_id=event.order_id)
            return False

    async def _payment_failed(
        self, event: GatewayEvent, target: PaymentStatus, log_status: PaymentLogStatus
    ) -> bool:
        assert event.order_id is not None
        try:
            async with self._session_factory.begin() as session:
                return await fail_payment(
                    session, event.order_id, target, log_status, event.payload
                )
        except OrderNotFoundError:
            logger.warning("webhook_order_not_found", order_id=event.order_id)
            return False

    async def _refund_succeeded(self, event: GatewayEvent) -> bool:
        assert event.object_id is not None
        async with self._session_factory.begin() as session:
            refunds = RefundLogRepository(session)
            refund = await refunds.get_by_refund_id(event.object_id, for_update=True)
            if refund is None:
                logger.warning("webhook_refund_not_found", refund_id=event.object_id)
                return False
            if refund.status == RefundStatus.COMPLETED:
                return False

            await refunds.update_status(
                refund.id, RefundStatus.COMPLETED, gateway_response=event.payload
            )

            orders = OrderRepository(session)
            order = await orders.get_by_id(refund.order_id, for_update=True)
            if order is not None and order.payment_status == PaymentStatus.COMPLETED:
                await orders.update_status(order.id, PaymentStatus.REFUNDED)
        return True

    async def _refund_failed(self, event: GatewayEvent) -> bool:
        assert event.object_id is not None
        async with self._session_factory.begin() as session:
            refunds = RefundLogRepository(session)
            refund = await refunds.get_by_refund_id(event.object_id, for_update=True)
            if refund is None:
                logger.warning("webhook_refund_not_found", refund_id=event.object_id)
                return False
            if refund.status in (RefundStatus.FAILED, RefundStatus.COMPLETED):
                return False

            await refunds.update_status(
                refund.id, RefundStatus.FAILED, gateway_response=event.payload
            )
        return True


def _event_name(raw_body: bytes) -> Any:
    # Only called after parse_event accepted the body as a JSON object
    return json.loads(raw_body).get("event")
