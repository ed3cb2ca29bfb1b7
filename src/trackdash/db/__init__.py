"""Database package."""

from trackdash.db.database import async_session, get_db, init_db
from trackdash.db.models import Base, Order, OrderStatus, TrackingEvent

__all__ = [
    "Base",
    "Order",
    "OrderStatus",
    "TrackingEvent",
    "async_session",
    "get_db",
    "init_db",
]
