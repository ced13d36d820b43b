"""Webhook signature helpers (HMAC-SHA256 over the raw request body)."""

import hashlib
import hmac

import structlog

from storefront_payment_ms.shared.domain.exceptions import WebhookVerificationError

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 digest of a webhook body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> None:
    """
    Verify a webhook signature against the raw body.

    Accepts a bare hex digest or one prefixed with `sha256=`.

    Raises:
        WebhookVerificationError: Secret not configured, signature missing or mismatched
    """
    if not secret:
        logger.error("webhook_rejected", reason="webhook secret not configured")
        raise WebhookVerificationError("Webhook secret not configured")

    if not signature:
        logger.warning("webhook_rejected", reason="missing signature")
        raise WebhookVerificationError("Missing signature")

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(secret, body)
    if not hmac.compare_digest(expected.encode(), provided.lower().encode()):
        logger.warning("webhook_rejected", reason="invalid signature", body_size=len(body))
        raise WebhookVerificationError("Invalid signature")
