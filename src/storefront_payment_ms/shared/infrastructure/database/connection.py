"""Database connection management using async SQLAlchemy."""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from storefront_payment_ms.shared.core.settings import get_settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Global engine and session factory
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(database_url: str | None = None, create_tables: bool | None = None) -> None:
    """Initialize database connection."""
    global _engine, _async_session_factory

    settings = get_settings()
    url = database_url or settings.database_url

    engine_options: dict[str, Any] = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        engine_options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)

    _engine = create_async_engine(url, **engine_options)

    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    if create_tables if create_tables is not None else settings.auto_create_tables:
        await create_all()

    logger.info("database_initialized", database=url.split("@")[-1])


async def create_all() -> None:
    """Create all tables known to the ORM metadata."""
    # Model classes must be imported so they register on Base.metadata
    from storefront_payment_ms.shared.infrastructure.database import models  # noqa: F401

    if _engine is None:
        raise RuntimeError("Database is not initialized")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connection."""
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("database_closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory used by the payment engine components."""
    if _async_session_factory is None:
        raise RuntimeError("Database is not initialized, call init_db() first")
    return _async_session_factory
