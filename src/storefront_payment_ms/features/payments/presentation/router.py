"""Payment API router."""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException

from storefront_payment_ms.features.payments.application.use_cases import (
    PaymentCoordinator,
    ProcessPaymentRequest,
    RefundRequest,
)
from storefront_payment_ms.features.payments.domain.enums import PaymentStatus
from storefront_payment_ms.features.payments.presentation.dependencies import (
    get_payment_coordinator,
)
from storefront_payment_ms.features.payments.presentation.dto import (
    PaymentInitiateRequest,
    PaymentResultResponse,
    PaymentRetryRequest,
    PaymentStatusResponse,
    RefundCreateRequest,
    RefundResponse,
)
from storefront_payment_ms.shared.presentation.api_response import APIResponse

router = APIRouter()


def _require_idempotency_key(*candidates: str | None) -> str:
    for key in candidates:
        if key and key.strip():
            return key.strip()
    raise HTTPException(status_code=400, detail="Idempotency key required")


@router.post(
    "/initiate",
    response_model=APIResponse[PaymentResultResponse],
    summary="Process a payment",
    description="""
    Capture the payment of an order.

    - Requires an idempotency key (`Idempotency-Key` header or `idempotencyKey` field)
    - Repeating a request with the same key returns the original outcome
      without charging again
    - Transient gateway failures are retried with exponential backoff
    """,
)
async def initiate_payment(
    request: PaymentInitiateRequest,
    coordinator: Annotated[PaymentCoordinator, Depends(get_payment_coordinator)],
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> APIResponse[PaymentResultResponse]:
    """Process a payment."""
    key = _require_idempotency_key(idempotency_key, request.idempotency_key)

    result = await coordinator.process_payment(
        ProcessPaymentRequest(
            order_id=request.order_id,
            amount=request.amount,
            currency=request.currency,
            customer_id=request.customer_id,
            idempotency_key=key,
        )
    )

    return APIResponse.ok(
        data=PaymentResultResponse(**result.to_dict()),
        message=(
            "Payment already processed (idempotent)"
            if result.replayed
            else "Payment accepted, awaiting confirmation"
            if result.status == PaymentStatus.PROCESSING
            else "Payment processed successfully"
        ),
    )


@router.post(
    "/retry/{order_id}",
    response_model=APIResponse[PaymentResultResponse],
    summary="Retry a failed payment",
    description="""
    Re-run the payment of an order that is not paid yet, charging the
    order's own total. A fresh idempotency key is required.
    """,
)
async def retry_payment(
    order_id: str,
    coordinator: Annotated[PaymentCoordinator, Depends(get_payment_coordinator)],
    request: PaymentRetryRequest | None = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> APIResponse[PaymentResultResponse]:
    """Retry a payment."""
    key = _require_idempotency_key(
        idempotency_key, request.idempotency_key if request else None
    )

    result = await coordinator.retry_payment(order_id, key)

    return APIResponse.ok(
        data=PaymentResultResponse(**result.to_dict()),
        message="Payment retried",
    )


@router.get(
    "/status/{order_id}",
    response_model=APIResponse[PaymentStatusResponse],
    summary="Get payment status",
    description="Retrieve the payment fields of an order.",
)
async def get_payment_status(
    order_id: str,
    coordinator: Annotated[PaymentCoordinator, Depends(get_payment_coordinator)],
) -> APIResponse[PaymentStatusResponse]:
    """Get the payment status of an order."""
    order = await coordinator.get_payment_status(order_id)
    return APIResponse.ok(data=PaymentStatusResponse.from_order(order))


@router.post(
    "/refund",
    response_model=APIResponse[RefundResponse],
    summary="Refund a payment",
    description="""
    Issue a refund for a completed order.

    The refund is accepted by the gateway asynchronously; the order becomes
    `refunded` once the gateway confirms it through the refund webhook.
    """,
)
async def refund_payment(
    request: RefundCreateRequest,
    coordinator: Annotated[PaymentCoordinator, Depends(get_payment_coordinator)],
) -> APIResponse[RefundResponse]:
    """Initiate a refund."""
    outcome = await coordinator.initiate_refund(
        RefundRequest(order_id=request.order_id, amount=request.amount, reason=request.reason)
    )

    return APIResponse.ok(
        data=RefundResponse(**outcome.to_dict()),
        message="Refund initiated",
    )
