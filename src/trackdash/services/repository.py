"""Order persistence."""

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from trackdash.db.models import TERMINAL_STATUSES, Order, OrderStatus, TrackingEvent
from trackdash.errors import OrderNotFoundError, StoreError
from trackdash.orders import OrderState, TrackingEntry, as_utc

logger = logging.getLogger(__name__)

# Scalar columns copied between OrderState and the Order row.
_ORDER_FIELDS = (
    "order_number",
    "status",
    "freight_type",
    "sales_channel",
    "customer_name",
    "city",
    "state",
    "zip_code",
    "invoice_number",
    "tracking_code",
    "freight_value",
    "total_value",
    "shipping_date",
    "max_shipping_deadline",
    "estimated_delivery_date",
    "last_update",
    "last_api_sync",
    "last_api_error",
    "is_delayed",
)
_DATE_FIELDS = frozenset(
    {
        "shipping_date",
        "max_shipping_deadline",
        "estimated_delivery_date",
        "last_update",
        "last_api_sync",
    }
)


def to_state(row: Order) -> OrderState:
    """Build an immutable snapshot from an ORM row (events must be loaded)."""
    values = {}
    for name in _ORDER_FIELDS:
        value = getattr(row, name)
        values[name] = as_utc(value) if name in _DATE_FIELDS else value
    history = tuple(
        TrackingEntry(
            status=event.status,
            description=event.description,
            date=as_utc(event.event_date),
            city=event.city,
            state=event.state,
        )
        for event in sorted(row.events, key=lambda e: as_utc(e.event_date))
    )
    return OrderState(id=row.id, tracking_history=history, **values)


class OrderRepository:
    """Keyed order store backed by SQLAlchemy.

    Writes are only flushed; :meth:`transaction` commits them together so a
    reader never sees an order updated without its tracking history.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["OrderRepository"]:
        try:
            yield self
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception("Order store transaction failed")
            raise StoreError(str(e)) from e
        except BaseException:
            await self.db.rollback()
            raise

    def _orders(self):
        return select(Order).options(selectinload(Order.events))

    async def _fetch_one(self, query) -> Order | None:
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        return result.scalar_one_or_none()

    async def _fetch_all(self, query) -> list[Order]:
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        return list(result.scalars().all())

    async def get(self, order_id: int) -> OrderState | None:
        row = await self._fetch_one(self._orders().where(Order.id == order_id))
        return to_state(row) if row else None

    async def require(self, order_id: int) -> OrderState:
        order = await self.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def find_by_business_key(self, order_number: str) -> OrderState | None:
        row = await self._fetch_one(self._orders().where(Order.order_number == order_number))
        return to_state(row) if row else None

    async def find_by_business_keys(self, order_numbers: Iterable[str]) -> dict[str, OrderState]:
        keys = list(set(order_numbers))
        if not keys:
            return {}
        rows = await self._fetch_all(self._orders().where(Order.order_number.in_(keys)))
        return {row.order_number: to_state(row) for row in rows}

    async def list_non_terminal(self) -> list[OrderState]:
        rows = await self._fetch_all(
            self._orders().where(Order.status.not_in(list(TERMINAL_STATUSES))).order_by(Order.id)
        )
        return [to_state(row) for row in rows]

    async def list_visible(self) -> list[OrderState]:
        """All orders except canceled ones, newest first."""
        rows = await self._fetch_all(
            self._orders()
            .where(Order.status != OrderStatus.CANCELED)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return [to_state(row) for row in rows]

    async def _row_for(self, order: OrderState) -> Order | None:
        if order.id is not None:
            return await self._fetch_one(self._orders().where(Order.id == order.id))
        return await self._fetch_one(self._orders().where(Order.order_number == order.order_number))

    async def upsert(self, order: OrderState) -> OrderState:
        """Insert or update an order's scalar fields; returns it with its id."""
        row = await self._row_for(order)
        if row is None:
            row = Order(events=[])
            self.db.add(row)
        for name in _ORDER_FIELDS:
            value = getattr(order, name)
            # Stored as UTC wall time; SQLite keeps no offset
            setattr(row, name, as_utc(value) if name in _DATE_FIELDS else value)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        return order.evolve(id=row.id)

    async def replace_tracking_events(self, order_id: int, events: Iterable[TrackingEntry]) -> None:
        row = await self._fetch_one(self._orders().where(Order.id == order_id))
        if row is None:
            raise StoreError(f"Order {order_id} disappeared while replacing its history")
        row.events = [
            TrackingEvent(
                status=event.status,
                description=event.description,
                event_date=as_utc(event.date),
                city=event.city,
                state=event.state,
            )
            for event in events
        ]
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def save(self, order: OrderState, replace_history: bool = True) -> OrderState:
        """Persist an order and optionally its history in one transaction."""
        async with self.transaction():
            saved = await self.upsert(order)
            if replace_history:
                await self.replace_tracking_events(saved.id, order.tracking_history)
        return saved
