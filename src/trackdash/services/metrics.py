"""Read-side delay, punctuality and carrier statistics.

Everything here is pure: functions take a collection of ``OrderState`` values
plus an explicit ``now`` and timezone, and never call out or mutate. The
``is_delayed`` flag is always recomputed from ``now`` rather than trusted
from storage.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo

from trackdash.config import settings
from trackdash.db.models import OrderStatus
from trackdash.orders import OrderState, utc_now
from trackdash.services.classifier import CarrierClassifier, normalise_carrier_name

SECONDS_PER_DAY = 86400
EARLY_THRESHOLD = timedelta(days=2)
END_OF_DAY = time(23, 59, 59, 999000)


class Punctuality(str, Enum):
    EARLY = "early"
    ON_TIME = "on_time"
    LATE = "late"


@dataclass
class CarrierStats:
    name: str
    volume: int = 0
    on_time: int = 0
    late: int = 0
    early: int = 0
    delivered: int = 0
    total_transit_days: float = 0.0
    transit_samples: int = 0

    @property
    def average_transit_days(self) -> float:
        if not self.transit_samples:
            return 0.0
        return round(self.total_transit_days / self.transit_samples, 1)

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "volume": self.volume,
            "on_time": self.on_time,
            "late": self.late,
            "early": self.early,
            "delivered": self.delivered,
            "average_transit_days": self.average_transit_days,
        }


def business_tz() -> tzinfo:
    return ZoneInfo(settings.business_timezone)


def _refresh(order: OrderState, now: datetime) -> OrderState:
    return order.with_delay_flag(now)


def delay_days(order: OrderState, now: datetime | None = None) -> int:
    """Whole days (rounded up) the order is past its estimate, 0 if not delayed."""
    now = now or utc_now()
    order = _refresh(order, now)
    if not order.is_delayed:
        return 0
    elapsed = abs((now - order.estimated_delivery_date).total_seconds())
    return math.ceil(elapsed / SECONDS_PER_DAY)


def is_channel_order(order: OrderState, classifier: CarrierClassifier | None = None) -> bool:
    classifier = classifier or CarrierClassifier()
    return (
        order.status == OrderStatus.CHANNEL_LOGISTICS
        or classifier.is_channel_managed(order.freight_type)
    )


def is_at_risk(order: OrderState, now: datetime, classifier: CarrierClassifier | None = None) -> bool:
    if order.status == OrderStatus.CANCELED or is_channel_order(order, classifier):
        return False
    order = _refresh(order, now)
    delayed = order.is_delayed and order.status != OrderStatus.DELIVERED
    return delayed or order.status in (OrderStatus.FAILURE, OrderStatus.RETURNED)


def risk_orders(
    orders: Iterable[OrderState],
    now: datetime | None = None,
    min_days: int = 0,
    classifier: CarrierClassifier | None = None,
) -> list[OrderState]:
    """Orders needing attention, most delayed first."""
    now = now or utc_now()
    classifier = classifier or CarrierClassifier()
    risky = [
        _refresh(order, now)
        for order in orders
        if is_at_risk(order, now, classifier) and delay_days(order, now) >= min_days
    ]
    return sorted(risky, key=lambda order: delay_days(order, now), reverse=True)


def delivery_deadline(order: OrderState, tz: tzinfo | None = None) -> datetime | None:
    """End of the estimated delivery day in the business timezone."""
    if order.estimated_delivery_date is None:
        return None
    tz = tz or business_tz()
    local = order.estimated_delivery_date.astimezone(tz)
    return datetime.combine(local.date(), END_OF_DAY, tzinfo=tz)


def delivery_punctuality(order: OrderState, tz: tzinfo | None = None) -> Punctuality | None:
    """Classify a delivered order against its promised day.

    Returns None for orders that are not delivered or lack the dates needed.
    """
    if order.status != OrderStatus.DELIVERED or order.last_update is None:
        return None
    deadline = delivery_deadline(order, tz)
    if deadline is None:
        return None
    if order.last_update > deadline:
        return Punctuality.LATE
    if deadline - order.last_update > EARLY_THRESHOLD:
        return Punctuality.EARLY
    return Punctuality.ON_TIME


def transit_days(order: OrderState) -> float | None:
    """Days from the first tracking event (or shipping date) to the last update."""
    if order.last_update is None:
        return None
    if order.tracking_history:
        start = min(event.date for event in order.tracking_history)
    else:
        start = order.shipping_date
    if start is None:
        return None
    return (order.last_update - start).total_seconds() / SECONDS_PER_DAY


def average_transit_days(orders: Iterable[OrderState]) -> float:
    """Mean transit time of delivered orders; negative samples are discarded."""
    samples = [
        days
        for order in orders
        if order.status == OrderStatus.DELIVERED
        and (days := transit_days(order)) is not None
        and days >= 0
    ]
    if not samples:
        return 0.0
    return round(sum(samples) / len(samples), 1)


def on_time_rate(
    orders: Iterable[OrderState], now: datetime | None = None, tz: tzinfo | None = None
) -> float:
    """Percentage of delivered-on-time orders over delivered plus active delays."""
    now = now or utc_now()
    tz = tz or business_tz()
    delivered = on_time = active_delayed = 0
    for order in orders:
        order = _refresh(order, now)
        if order.status == OrderStatus.DELIVERED:
            delivered += 1
            if delivery_punctuality(order, tz) in (Punctuality.ON_TIME, Punctuality.EARLY):
                on_time += 1
        elif order.is_delayed:
            active_delayed += 1
    measurable = delivered + active_delayed
    if measurable == 0:
        return 0.0
    return round(on_time / measurable * 100, 1)


def carrier_ranking(
    orders: Iterable[OrderState], tz: tzinfo | None = None
) -> list[CarrierStats]:
    """Per-carrier volume and punctuality, largest volume first.

    Carriers with equal volume keep the order in which they were first seen.
    """
    tz = tz or business_tz()
    ranking: dict[str, CarrierStats] = {}
    for order in orders:
        if order.status == OrderStatus.CANCELED:
            continue
        name = normalise_carrier_name(order.freight_type)
        stats = ranking.setdefault(name, CarrierStats(name=name))
        stats.volume += 1

        if order.status != OrderStatus.DELIVERED:
            continue
        stats.delivered += 1

        days = transit_days(order)
        if days is not None and days >= 0:
            stats.total_transit_days += days
            stats.transit_samples += 1

        punctuality = delivery_punctuality(order, tz)
        if punctuality is Punctuality.LATE:
            stats.late += 1
        elif punctuality is not None:
            stats.on_time += 1
            if punctuality is Punctuality.EARLY:
                stats.early += 1

    # sorted() is stable, so dict insertion order breaks ties
    return sorted(ranking.values(), key=lambda stats: stats.volume, reverse=True)


def dashboard_stats(
    orders: Iterable[OrderState], now: datetime | None = None, tz: tzinfo | None = None
) -> dict:
    """KPI counters for the dashboard header."""
    now = now or utc_now()
    tz = tz or business_tz()
    visible = [_refresh(order, now) for order in orders if order.status != OrderStatus.CANCELED]
    today = now.astimezone(tz).date()

    def count(predicate) -> int:
        return sum(1 for order in visible if predicate(order))

    finished = (OrderStatus.DELIVERED, OrderStatus.FAILURE, OrderStatus.RETURNED)
    return {
        "total": len(visible),
        "delivered": count(lambda o: o.status == OrderStatus.DELIVERED),
        "in_progress": count(lambda o: o.status not in finished),
        "waiting": count(lambda o: o.status in (OrderStatus.PENDING, OrderStatus.CREATED)),
        "in_transit": count(lambda o: o.status == OrderStatus.SHIPPED),
        "on_route": count(lambda o: o.status == OrderStatus.DELIVERY_ATTEMPT),
        "delayed": count(lambda o: o.is_delayed and o.status != OrderStatus.DELIVERED),
        "due_today": count(
            lambda o: o.estimated_delivery_date is not None
            and o.estimated_delivery_date.astimezone(tz).date() == today
            and o.status != OrderStatus.DELIVERED
        ),
        "no_forecast": count(lambda o: o.estimated_delivery_date is None),
        "no_sync": count(lambda o: not o.tracking_history),
        "alerts": len(risk_orders(visible, now)),
        "average_delivery_days": average_transit_days(visible),
        "on_time_percent": on_time_rate(visible, now, tz),
    }
