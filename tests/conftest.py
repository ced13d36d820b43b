"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file, a fresh settings object and
an in-process mock gateway.
"""

import asyncio
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_payment_ms.features.payments.application.circuit_breaker import (
    CircuitBreakerRegistry,
)
from storefront_payment_ms.features.payments.application.use_cases import PaymentCoordinator
from storefront_payment_ms.features.payments.domain.entities import (
    Order,
    PaymentLogEntry,
    RefundLogEntry,
)
from storefront_payment_ms.features.payments.infrastructure.adapters import MockPaymentAdapter
from storefront_payment_ms.features.payments.infrastructure.provider_factory import (
    get_payment_gateway,
)
from storefront_payment_ms.features.payments.infrastructure.repository import (
    OrderRepository,
    PaymentLogRepository,
    RefundLogRepository,
)
from storefront_payment_ms.features.payments.presentation.dependencies import (
    get_circuit_breakers,
)
from storefront_payment_ms.features.reconciliation.presentation.router import get_reconciler
from storefront_payment_ms.shared.core.settings import Settings, get_settings
from storefront_payment_ms.shared.infrastructure.database import (
    close_db,
    get_session_factory,
    init_db,
)

WEBHOOK_SECRET = "whsec_test_secret"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_payment_gateway.cache_clear()
    get_circuit_breakers.cache_clear()
    get_reconciler.cache_clear()


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Any:
    """Point settings at a per-test SQLite file and the mock gateway."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    monkeypatch.setenv("PAYMENT_PROVIDER", "mock")
    monkeypatch.setenv("WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("RECONCILIATION_ENABLED", "false")
    monkeypatch.setenv("REPLAY_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("REPLAY_WAIT_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("LOG_JSON", "false")
    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture
async def session_factory(
    settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialized database with all tables created."""
    await init_db(settings.database_url, create_tables=True)
    yield get_session_factory()
    await close_db()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def gateway() -> MockPaymentAdapter:
    return MockPaymentAdapter()


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=5, recovery_timeout=60.0, clock=clock)


@pytest.fixture
def coordinator(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: MockPaymentAdapter,
    breakers: CircuitBreakerRegistry,
    settings: Settings,
    sleep: RecordingSleep,
) -> PaymentCoordinator:
    return PaymentCoordinator(session_factory, gateway, breakers, settings, sleep=sleep)


@pytest.fixture
def make_order(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Order]]:
    """Insert an order; keyword arguments override any Order field."""

    async def _make(total: str = "99.99", currency: str = "USD", **overrides: Any) -> Order:
        order = Order.create(customer_id="cus_test", total=Decimal(total), currency=currency)
        for name, value in overrides.items():
            setattr(order, name, value)
        async with session_factory.begin() as session:
            return await OrderRepository(session).add(order)

    return _make


@pytest.fixture
def make_refund(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[RefundLogEntry]]:
    """Insert a refund log entry for an order."""

    async def _make(order: Order, amount: str = "20.00", **overrides: Any) -> RefundLogEntry:
        refund = RefundLogEntry.create(order.id, Decimal(amount), "test refund")
        for name, value in overrides.items():
            setattr(refund, name, value)
        async with session_factory.begin() as session:
            return await RefundLogRepository(session).create(refund)

    return _make


@pytest.fixture
def load_order(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[Order]]:
    async def _load(order_id: str) -> Order:
        async with session_factory() as session:
            order = await OrderRepository(session).get_by_id(order_id)
        assert order is not None
        return order

    return _load


@pytest.fixture
def payment_logs(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[list[PaymentLogEntry]]]:
    async def _logs(order_id: str) -> list[PaymentLogEntry]:
        async with session_factory() as session:
            return await PaymentLogRepository(session).list_for_order(order_id)

    return _logs


@pytest.fixture
def refund_logs(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[list[RefundLogEntry]]]:
    async def _logs(order_id: str) -> list[RefundLogEntry]:
        async with session_factory() as session:
            return await RefundLogRepository(session).list_for_order(order_id)

    return _logs
