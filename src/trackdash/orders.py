"""Immutable order state shared by ingestion, reconciliation and metrics.

The ORM rows in ``trackdash.db.models`` are only touched by the repository.
Everything else works on these frozen values, so a merge always produces a
new ``OrderState`` and a half-applied update can never be observed.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from trackdash.db.models import OrderStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TrackingEntry:
    """A single tracking event."""

    status: str
    description: str
    date: datetime
    city: str | None = None
    state: str | None = None


@dataclass(frozen=True)
class OrderState:
    """Snapshot of an order as seen by the sync engine."""

    order_number: str
    status: OrderStatus = OrderStatus.PENDING
    freight_type: str = "Aguardando"
    sales_channel: str = "Não identificado"
    id: int | None = None
    customer_name: str = "Desconhecido"
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    invoice_number: str | None = None
    tracking_code: str | None = None
    freight_value: float = 0.0
    total_value: float = 0.0
    shipping_date: datetime | None = None
    max_shipping_deadline: datetime | None = None
    estimated_delivery_date: datetime | None = None
    last_update: datetime | None = None
    last_api_sync: datetime | None = None
    last_api_error: str | None = None
    is_delayed: bool = False
    tracking_history: tuple[TrackingEntry, ...] = field(default_factory=tuple)

    def evolve(self, **changes) -> "OrderState":
        return replace(self, **changes)

    def with_delay_flag(self, now: datetime) -> "OrderState":
        """Return a copy whose ``is_delayed`` reflects ``now``."""
        delayed = compute_is_delayed(self.estimated_delivery_date, self.status, now)
        if delayed == self.is_delayed:
            return self
        return replace(self, is_delayed=delayed)


def compute_is_delayed(
    estimated_delivery_date: datetime | None, status: OrderStatus, now: datetime
) -> bool:
    """An order is delayed once its estimate has passed and it is not delivered."""
    if estimated_delivery_date is None:
        return False
    return now > estimated_delivery_date and status != OrderStatus.DELIVERED


def normalise_history(events) -> tuple[TrackingEntry, ...]:
    """Sort events by date and drop consecutive identical entries."""
    ordered = sorted(events, key=lambda event: event.date)
    history: list[TrackingEntry] = []
    for event in ordered:
        if history and history[-1] == event:
            continue
        history.append(event)
    return tuple(history)
