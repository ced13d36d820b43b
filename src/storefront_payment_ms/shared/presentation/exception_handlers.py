"""Exception handlers for the FastAPI application."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront_payment_ms.shared.domain.exceptions import (
    GatewayError,
    IdempotencyConflictError,
    OrderNotFoundError,
    PaymentError,
    PaymentProcessingError,
    ReconciliationError,
    RefundValidationError,
    RetryNotAllowedError,
    ServiceUnavailableError,
    WebhookPayloadError,
    WebhookVerificationError,
)

logger = structlog.get_logger(__name__)


def _error(
    status_code: int,
    message: str,
    errors: list[str],
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "errors": errors},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers."""

    @app.exception_handler(OrderNotFoundError)
    async def order_not_found_handler(request: Request, exc: OrderNotFoundError) -> JSONResponse:
        return _error(404, str(exc), ["Order not found"])

    @app.exception_handler(IdempotencyConflictError)
    async def idempotency_conflict_handler(
        request: Request, exc: IdempotencyConflictError
    ) -> JSONResponse:
        return _error(409, str(exc), ["Idempotency key conflict"])

    @app.exception_handler(RefundValidationError)
    async def refund_validation_handler(
        request: Request, exc: RefundValidationError
    ) -> JSONResponse:
        return _error(400, str(exc), [exc.reason])

    @app.exception_handler(RetryNotAllowedError)
    async def retry_not_allowed_handler(
        request: Request, exc: RetryNotAllowedError
    ) -> JSONResponse:
        return _error(400, str(exc), [exc.reason])

    @app.exception_handler(PaymentProcessingError)
    async def payment_processing_handler(
        request: Request, exc: PaymentProcessingError
    ) -> JSONResponse:
        errors = [str(exc.last_error)] if exc.last_error else []
        return _error(402, str(exc), errors)

    @app.exception_handler(ServiceUnavailableError)
    async def service_unavailable_handler(
        request: Request, exc: ServiceUnavailableError
    ) -> JSONResponse:
        headers = (
            {"Retry-After": str(int(exc.retry_after) + 1)} if exc.retry_after is not None else None
        )
        return _error(503, str(exc), ["Payment service temporarily unavailable"], headers)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        return _error(502, str(exc), ["Payment gateway error"])

    @app.exception_handler(WebhookVerificationError)
    async def webhook_verification_handler(
        request: Request, exc: WebhookVerificationError
    ) -> JSONResponse:
        return _error(401, str(exc), ["Webhook verification failed"])

    @app.exception_handler(WebhookPayloadError)
    async def webhook_payload_handler(request: Request, exc: WebhookPayloadError) -> JSONResponse:
        return _error(400, str(exc), ["Invalid webhook payload"])

    @app.exception_handler(ReconciliationError)
    async def reconciliation_handler(request: Request, exc: ReconciliationError) -> JSONResponse:
        return _error(409, str(exc), ["Order is not in processing state"])

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
        return _error(400, str(exc), [str(exc)])

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail), [str(exc.detail)], exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        return _error(422, "Validation error", errors)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        return _error(500, "Internal server error", [str(exc)])
