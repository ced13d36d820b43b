"""Reconciliation API router - Operator endpoints."""

from functools import lru_cache
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from storefront_payment_ms.features.payments.infrastructure.provider_factory import (
    get_payment_gateway,
)
from storefront_payment_ms.features.payments.presentation.dependencies import (
    get_circuit_breakers,
)
from storefront_payment_ms.features.reconciliation.application.reconciler import (
    PaymentReconciler,
)
from storefront_payment_ms.shared.infrastructure.database import get_session_factory
from storefront_payment_ms.shared.presentation.api_response import APIResponse

router = APIRouter()


@lru_cache
def get_reconciler() -> PaymentReconciler:
    """Process-wide reconciler; its background task is started by the app lifespan."""
    return PaymentReconciler(
        session_factory=get_session_factory(),
        gateway=get_payment_gateway(),
        breakers=get_circuit_breakers(),
    )


@router.post(
    "/orders/{order_id}",
    response_model=APIResponse[dict[str, Any]],
    summary="Reconcile an order",
    description="""
    Ask the gateway for the charge status of an order stuck in `processing`
    and settle it. Also re-enables automatic reconciliation for escalated orders.
    """,
)
async def reconcile_order(
    order_id: str,
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
) -> APIResponse[dict[str, Any]]:
    """Manually reconcile an order."""
    result = await reconciler.reconcile_order(order_id)
    return APIResponse.ok(data=result.to_dict(), message=f"Order {result.status.value}")


@router.get(
    "/stats",
    response_model=APIResponse[dict[str, Any]],
    summary="Reconciliation statistics",
)
async def reconciliation_stats(
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
) -> APIResponse[dict[str, Any]]:
    """Get reconciliation statistics."""
    return APIResponse.ok(data=await reconciler.get_stats())
