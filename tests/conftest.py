"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trackdash.carriers.base import BaseCarrier, CarrierConfig, TrackingResult
from trackdash.db.models import Base, OrderStatus
from trackdash.orders import OrderState, TrackingEntry
from trackdash.services.repository import OrderRepository

NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


class StubCarrier(BaseCarrier):
    """Tracking provider returning canned results per order number."""

    def __init__(self, results=None, default=None):
        super().__init__(
            CarrierConfig(id="stub", name="Stub Tracking", endpoint="", status_rules=[])
        )
        self.results = results or {}
        self.default = default or TrackingResult.no_data()
        self.calls: list[str] = []

    async def fetch_status(self, order_number):
        self.calls.append(order_number)
        return self.results.get(order_number, self.default)


@pytest.fixture
async def db_session():
    """Create an in-memory database session for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def repository(db_session):
    return OrderRepository(db_session)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def stub_carrier():
    """Factory for StubCarrier instances."""
    return StubCarrier


@pytest.fixture
def make_order():
    """Build an OrderState with sensible defaults."""

    def _make(order_number="1001", **overrides):
        values = {
            "order_number": order_number,
            "status": OrderStatus.SHIPPED,
            "freight_type": "Jadlog",
            "shipping_date": NOW - timedelta(days=5),
            "estimated_delivery_date": NOW + timedelta(days=2),
            "last_update": NOW - timedelta(days=5),
            "tracking_history": (
                TrackingEntry(
                    status="SHIPPED",
                    description="Pedido enviado",
                    date=NOW - timedelta(days=5),
                ),
            ),
        }
        values.update(overrides)
        return OrderState(**values)

    return _make


@pytest.fixture
def stored_order(repository, make_order):
    """Persist an order and return the stored snapshot."""

    async def _store(order_number="1001", **overrides):
        return await repository.save(make_order(order_number, **overrides))

    return _store
