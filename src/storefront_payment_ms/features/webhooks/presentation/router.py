"""Webhook API router - Handles payment gateway callbacks."""

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from storefront_payment_ms.features.webhooks.application.processor import WebhookProcessor
from storefront_payment_ms.features.webhooks.application.signature import (
    SIGNATURE_HEADER,
    compute_signature,
)
from storefront_payment_ms.shared.core.settings import get_settings
from storefront_payment_ms.shared.infrastructure.database import get_session_factory

router = APIRouter()


def get_webhook_processor() -> WebhookProcessor:
    """Dependency for getting the webhook processor."""
    return WebhookProcessor(get_session_factory())


@router.post(
    "/payments",
    summary="Payment webhook",
    description="""
    Endpoint for payment events from the gateway
    (`payment.succeeded`, `payment.failed`, `payment.cancelled`).

    - Validates the HMAC-SHA256 signature in the `X-Webhook-Signature` header
      against the raw body
    - Redelivered events are acknowledged without changing anything
    """,
)
async def payment_webhook(
    request: Request,
    processor: Annotated[WebhookProcessor, Depends(get_webhook_processor)],
    webhook_signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
) -> dict[str, Any]:
    """Handle payment webhooks."""
    return await processor.handle(await request.body(), webhook_signature)


@router.post(
    "/refunds",
    summary="Refund webhook",
    description="""
    Endpoint for refund events from the gateway
    (`refund.succeeded`, `refund.failed`).

    Header required: `X-Webhook-Signature`
    """,
)
async def refund_webhook(
    request: Request,
    processor: Annotated[WebhookProcessor, Depends(get_webhook_processor)],
    webhook_signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
) -> dict[str, Any]:
    """Handle refund webhooks."""
    return await processor.handle(await request.body(), webhook_signature)


@router.post(
    "/test/generate-signature",
    summary="Generate webhook signature (Testing)",
    description="Generate a valid webhook signature for a payload. Not available in production.",
    tags=["Testing"],
)
async def generate_test_signature(payload: dict[str, Any]) -> dict[str, str]:
    """Generate a test webhook signature."""
    settings = get_settings()
    if settings.environment == "production" or not settings.webhook_secret:
        raise HTTPException(status_code=404, detail="Not found")

    payload_str = json.dumps(payload)
    return {
        "payload": payload_str,
        "signature": compute_signature(settings.webhook_secret, payload_str.encode()),
        "header_name": SIGNATURE_HEADER,
    }
