"""Shared infrastructure module."""

from storefront_payment_ms.shared.infrastructure.database import (
    close_db,
    get_session_factory,
    init_db,
)

__all__ = [
    "close_db",
    "get_session_factory",
    "init_db",
]
