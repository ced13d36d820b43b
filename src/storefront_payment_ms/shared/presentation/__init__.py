"""Shared presentation module."""

from storefront_payment_ms.shared.presentation.exception_handlers import register_exception_handlers
from storefront_payment_ms.shared.presentation.api_response import APIResponse

__all__ = ["register_exception_handlers", "APIResponse"]
