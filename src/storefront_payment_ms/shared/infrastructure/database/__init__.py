"""Database infrastructure module."""

from storefront_payment_ms.shared.infrastructure.database.connection import (
    Base,
    close_db,
    create_all,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "close_db",
    "create_all",
    "get_session_factory",
    "init_db",
]
