"""Reconciliation of stored orders against the tracking provider."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from trackdash.carriers.base import BaseCarrier, TrackingResult
from trackdash.db.models import OrderStatus
from trackdash.orders import OrderState, TrackingEntry, normalise_history, utc_now
from trackdash.services.classifier import CarrierClassifier

logger = logging.getLogger(__name__)

FINALIZED_REASON = "already finalized"
CHANNEL_EVENT_DESCRIPTION = "Logística gerenciada pelo canal de venda"


class KeyedLocks:
    """Per-key asyncio locks, dropped once no task holds or waits on them."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


# Reconciliations of the same business key never interleave.
order_locks = KeyedLocks()


@dataclass(frozen=True)
class Skipped:
    reason: str
    order: OrderState


@dataclass(frozen=True)
class ChannelClassified:
    order: OrderState


@dataclass(frozen=True)
class Updated:
    order: OrderState


ReconcileOutcome = Skipped | ChannelClassified | Updated


def merge_tracking(existing: OrderState, result: TrackingResult, now: datetime) -> OrderState:
    """Return a new order state with a successful fetch merged in."""
    history = normalise_history(result.events)
    estimated = result.expected_delivery or existing.estimated_delivery_date
    merged = existing.evolve(
        status=result.status,
        freight_type=result.carrier_name or existing.freight_type,
        estimated_delivery_date=estimated,
        tracking_history=history,
        last_update=history[-1].date if history else now,
        last_api_sync=now,
        last_api_error=None,
    )
    return merged.with_delay_flag(now)


def mark_fetch_failure(existing: OrderState, reason: str, now: datetime) -> OrderState:
    """Record a failed attempt without touching status, estimate or history."""
    return existing.evolve(last_api_error=reason, last_api_sync=now)


def mark_channel_managed(existing: OrderState, now: datetime) -> OrderState:
    """Move an order to channel logistics, keeping any existing history."""
    history = existing.tracking_history
    if not history:
        history = (
            TrackingEntry(
                status=OrderStatus.CHANNEL_LOGISTICS.value,
                description=CHANNEL_EVENT_DESCRIPTION,
                date=existing.shipping_date or existing.last_update or now,
                city=existing.city,
                state=existing.state,
            ),
        )
    return existing.evolve(
        status=OrderStatus.CHANNEL_LOGISTICS,
        tracking_history=history,
        last_update=history[-1].date,
    )


class OrderReconciler:
    """Decides, per order, whether to skip, classify or fetch and merge."""

    def __init__(
        self,
        repository,
        carrier: BaseCarrier,
        classifier: CarrierClassifier | None = None,
        clock: Callable[[], datetime] = utc_now,
        locks: KeyedLocks | None = None,
    ):
        self.repository = repository
        self.carrier = carrier
        self.classifier = classifier or CarrierClassifier()
        self.clock = clock
        self.locks = order_locks if locks is None else locks

    async def reconcile(self, order: OrderState) -> ReconcileOutcome:
        """Reconcile one order.

        Business outcomes are returned; only store failures raise.
        """
        async with self.locks.hold(order.order_number):
            if order.id is not None:
                # A concurrent sync of the same order may have finished first.
                order = await self.repository.get(order.id) or order
            return await self._reconcile(order)

    async def _reconcile(self, order: OrderState) -> ReconcileOutcome:
        if order.status.is_terminal:
            return Skipped(FINALIZED_REASON, order)

        if self.classifier.classify(order.freight_type).channel_managed:
            classified = mark_channel_managed(order, self.clock())
            if classified != order:
                classified = await self.repository.save(classified)
            return ChannelClassified(classified)

        logger.info("Syncing order %s with %s", order.order_number, self.carrier.config.name)
        result = await self.carrier.fetch_status(order.order_number)
        now = self.clock()

        if not result.success:
            reason = result.error or "No tracking data"
            logger.warning("Sync skipped for order %s: %s", order.order_number, reason)
            failed = mark_fetch_failure(order, reason, now)
            failed = await self.repository.save(failed, replace_history=False)
            return Skipped(reason, failed)

        merged = merge_tracking(order, result, now)
        merged = await self.repository.save(merged)
        return Updated(merged)
